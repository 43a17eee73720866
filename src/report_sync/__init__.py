"""
Report Sync - incremental synchronization of trading-venue data.

Pulls ledgers, trades, orders, movements, funding and position history per
account, plus public trades, ticker history and reference lists, from a
rate-limited remote API into a local store so that reports can run against
local data.
"""

__version__ = "1.0.0"
__author__ = "Report Sync Team"
