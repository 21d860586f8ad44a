"""
Inventory Kernel - Stock Ledger & Reservation Engine

A warehouse-scoped stock ledger with:
- Per-row serialized quantity/reserved updates
- Append-only movement audit trail
- Timed reservations with a one-way state machine
- Background expiry sweeping
"""

__version__ = "0.1.0"
