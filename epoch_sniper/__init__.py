"""
Polymarket BTC 5-Min Epoch Sniper
=================================

Buys one side of the active 5-minute Bitcoin up/down market when its
best ask hits a target price inside the last seconds before expiry.

IMPORTANT: Configure .env before running. Start with DRY_RUN=true!
"""

__version__ = "1.0.0"
__author__ = "Polymarket Epoch Sniper"
