"""
Sales Kernel - order-to-cash workflow core

A small, auditable state machine for service sales with:
- Operational execution track (pending -> in_progress -> completed)
- Financial reconciliation track gated by the installment ledger
- Exact Decimal amortization into monthly installments
- Append-only, hash-chained status history
- Atomic, row-locked transitions
"""

__version__ = "0.1.0"
