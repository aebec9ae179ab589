"""
LiquidLab Revenue Backend

Fee attribution and revenue reconciliation for trading platforms built on
Hyperliquid:
- Checkpointed ingestion of attributed fills into a fee ledger
- Per-platform revenue summaries
- Payout preparation and bookkeeping
- REST API for dashboards and operators
"""

__version__ = "0.1.0"
