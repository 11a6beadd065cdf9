"""
Allocation ledger module.

Keeps per-asset allocations within the asset balance and records every
change in an append-only history.
"""
