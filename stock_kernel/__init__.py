"""
Stock Kernel - daily inventory ledger

A per-product, per-business-day stock ledger with:
- Exactly one ledger row per (product, business date)
- Database-derived closing balances
- Backdated corrections propagated forward in one set-based update
- Append-only transaction log and immutable daily snapshots
"""

__version__ = "0.1.0"
