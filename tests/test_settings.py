import unittest
import sys
import os
from unittest import mock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError

from config.settings import Settings


def build(**env):
    """Settings from an isolated environment, ignoring any .env file."""
    with mock.patch.dict(os.environ, env, clear=True):
        return Settings(_env_file=None)


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        settings = build()
        self.assertTrue(settings.dry_run)
        self.assertEqual(settings.target_prices, [0.07])
        self.assertEqual(settings.entry_seconds_before_expiry, 60)
        self.assertEqual(settings.min_seconds_before_expiry, 5)
        self.assertIsNone(settings.gas_max_fee_gwei)

    def test_target_prices_keep_order(self):
        settings = build(TARGET_PRICES="0.08, 0.07,0.1")
        self.assertEqual(settings.target_prices, [0.08, 0.07, 0.1])

    def test_invalid_target_price(self):
        with self.assertRaises(ValidationError):
            build(TARGET_PRICES="0.07,abc")
        with self.assertRaises(ValidationError):
            build(TARGET_PRICES="1.5")
        with self.assertRaises(ValidationError):
            build(TARGET_PRICES=" , ")

    def test_live_mode_requires_key(self):
        with self.assertRaises(ValidationError):
            build(DRY_RUN="false")

        settings = build(DRY_RUN="false", POLYMARKET_PRIVATE_KEY="0x" + "11" * 32)
        self.assertFalse(settings.dry_run)

    def test_trade_size_must_be_positive(self):
        with self.assertRaises(ValidationError):
            build(TRADE_SIZE_USD="0")

    def test_window_order(self):
        with self.assertRaises(ValidationError):
            build(ENTRY_SECONDS_BEFORE_EXPIRY="3", MIN_SECONDS_BEFORE_EXPIRY="5")

    def test_gas_override(self):
        self.assertEqual(build(GAS_MAX_FEE_GWEI="400").gas_max_fee_gwei, 400)
        self.assertIsNone(build(GAS_MAX_FEE_GWEI="").gas_max_fee_gwei)


if __name__ == "__main__":
    unittest.main()
