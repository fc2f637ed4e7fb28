"""
Ledger Kernel

Double-entry GL posting core for a multi-tenant accounting service:
- Decimal-only money and currency value objects
- GL line and posting model (ERPNext voucher semantics)
- Posting validation with typed, value-returned errors
- Reversal postings for cancelled vouchers
- Boundary adapter models for the relational ledger store
"""

__version__ = "0.1.0"
