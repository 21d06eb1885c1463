"""
stock_batch -- Scheduled and operational jobs over the stock ledger.

Provides the daily rollover (snapshot, carry-forward, retention), the
resync/backfill tool, the pending-transaction and stock-alert jobs, and
an in-process cron scheduler that runs them in business local time.

Architecture:
    stock_batch/ is a top-level package.  Nothing in stock_kernel/
    imports from stock_batch.

Invariants:
    - Clock injection (no datetime.now() calls).
    - Cron evaluation is pure.
    - One rollover per process at a time; cross-process overlap is
      caught by the advisory lock and the ledger's unique constraint.
    - Jobs own their transactions; kernel services only flush.
"""
