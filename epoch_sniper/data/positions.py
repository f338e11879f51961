"""
Redeemable Positions
=====================

Paginated lookup of settled positions from the Polymarket Data API.
"""

import socket
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class RedeemablePosition:
    condition_id: str
    title: str = ""
    size: Optional[float] = None


class PositionsClient:
    """Fetches every redeemable position of a wallet, one condition each."""

    def __init__(
        self,
        data_api_base: str = "https://data-api.polymarket.com",
        page_size: int = 100,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 15.0
    ):
        self.data_api_base = data_api_base.rstrip("/")
        self.page_size = page_size
        self.timeout_seconds = timeout_seconds

        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(family=socket.AF_INET)
            )
        return self._session

    async def _fetch_page(self, owner: str, offset: int) -> list:
        params = {
            "user": owner,
            "redeemable": "true",
            "limit": self.page_size,
            "offset": offset
        }

        async with self._get_session().get(
            f"{self.data_api_base}/positions",
            params=params,
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        ) as resp:
            resp.raise_for_status()
            raw = await resp.json()

        if isinstance(raw, list):
            return raw
        if isinstance(raw, dict):
            return raw.get("positions") or []
        return []

    async def get_redeemable(self, owner: str) -> List[RedeemablePosition]:
        """
        All redeemable positions for `owner`, deduplicated by condition.

        Paging stops at the first page shorter than the page size.

        Raises:
            aiohttp.ClientError / asyncio.TimeoutError on transport failure
        """
        seen = set()
        positions: List[RedeemablePosition] = []
        offset = 0

        while True:
            rows = await self._fetch_page(owner, offset)

            for row in rows:
                if not isinstance(row, dict):
                    continue

                condition_id = row.get("conditionId")
                if not condition_id or condition_id in seen:
                    continue

                seen.add(condition_id)
                size = row.get("size")
                positions.append(RedeemablePosition(
                    condition_id=condition_id,
                    title=row.get("title") or "",
                    size=float(size) if isinstance(size, (int, float)) else None
                ))

            if len(rows) < self.page_size:
                break
            offset += self.page_size

        logger.info("redeemable_positions_fetched", owner=owner, count=len(positions))
        return positions

    async def close(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
