"""
Market Resolver
================

Maps a 5-minute epoch onto its Polymarket market via the Gamma API.

Slug pattern: btc-updown-5m-{epoch_start_timestamp}
"""

import asyncio
import json
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple

import aiohttp
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = structlog.get_logger()


@dataclass(frozen=True)
class MarketInfo:
    """One epoch's binary market. First token is YES (up), second is NO (down)."""
    condition_id: str
    question: str
    yes_token_id: str
    no_token_id: str
    epoch: int
    closed: bool
    slug: str = ""
    end_date: str = ""

    @property
    def token_ids(self) -> Tuple[str, str]:
        return (self.yes_token_id, self.no_token_id)


class GammaMarket(BaseModel):
    """The subset of a Gamma /markets payload the bot relies on."""
    id: Optional[str] = None
    condition_id: Optional[str] = Field(default=None, alias="conditionId")
    question: Optional[str] = None
    slug: Optional[str] = None
    clob_token_ids: List[str] = Field(default_factory=list, alias="clobTokenIds")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    end_date_iso: Optional[str] = Field(default=None, alias="endDateIso")
    closed: Optional[bool] = None

    class Config:
        populate_by_name = True

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value):
        return None if value is None else str(value)

    @field_validator("clob_token_ids", mode="before")
    @classmethod
    def _decode_token_ids(cls, value):
        # Gamma sends this either as a list or as a JSON-encoded string
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value) if value.strip() else []
        return value


def parse_market(epoch: int, payload: dict) -> Optional[MarketInfo]:
    """
    Convert a Gamma market payload into MarketInfo.

    Returns None for malformed payloads or markets with fewer than
    two outcome tokens. Token order is kept exactly as returned.
    """
    try:
        market = GammaMarket.model_validate(payload)
    except (ValidationError, ValueError) as e:
        logger.warning("market_payload_invalid", epoch=epoch, error=str(e))
        return None

    if len(market.clob_token_ids) < 2:
        logger.info(
            "market_missing_tokens",
            epoch=epoch,
            token_count=len(market.clob_token_ids)
        )
        return None

    return MarketInfo(
        condition_id=market.condition_id or market.id or "",
        question=market.question or "",
        yes_token_id=market.clob_token_ids[0],
        no_token_id=market.clob_token_ids[1],
        epoch=epoch,
        closed=market.closed is True,
        slug=market.slug or "",
        end_date=market.end_date or market.end_date_iso or "",
    )


class MarketResolver:
    """
    Looks up the market for an epoch.

    A missing market (404) is an expected outcome early in an epoch,
    not an error. Transport failures are logged and also yield None;
    the caller retries on its next loop iteration.
    """

    def __init__(
        self,
        gamma_api_base: str = "https://gamma-api.polymarket.com",
        slug_prefix: str = "btc-updown-5m",
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 10.0
    ):
        self.gamma_api_base = gamma_api_base.rstrip("/")
        self.slug_prefix = slug_prefix
        self.timeout_seconds = timeout_seconds

        self._session = session
        self._owns_session = session is None

        # Stats
        self.lookups = 0
        self.not_found = 0
        self.errors = 0

    def market_slug(self, epoch: int) -> str:
        return f"{self.slug_prefix}-{epoch}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(family=socket.AF_INET)
            )
        return self._session

    async def resolve(self, epoch: int) -> Optional[MarketInfo]:
        """
        Resolve the market for an epoch.

        Args:
            epoch: Epoch start timestamp

        Returns:
            MarketInfo, or None if not listed / unusable / lookup failed
        """
        slug = self.market_slug(epoch)
        url = f"{self.gamma_api_base}/markets/slug/{slug}"
        self.lookups += 1

        try:
            async with self._get_session().get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            ) as resp:
                if resp.status == 404:
                    self.not_found += 1
                    logger.info("market_not_listed", epoch=epoch, slug=slug)
                    return None

                if resp.status != 200:
                    self.errors += 1
                    logger.error("gamma_api_error", status=resp.status, slug=slug)
                    return None

                payload = await resp.json()

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.errors += 1
            logger.error("market_lookup_error", slug=slug, error=str(e))
            return None

        if not isinstance(payload, dict):
            logger.warning("market_payload_invalid", epoch=epoch, error="not an object")
            return None

        market = parse_market(epoch, payload)
        if market:
            logger.info(
                "market_resolved",
                epoch=epoch,
                question=market.question,
                closed=market.closed
            )
        return market

    async def close(self):
        """Close the HTTP session if this resolver created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def get_stats(self) -> dict:
        """Return resolver statistics."""
        return {
            "lookups": self.lookups,
            "not_found": self.not_found,
            "errors": self.errors
        }
