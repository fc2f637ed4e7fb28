"""
Pure domain layer.

This module contains value objects, GL line DTOs and validation logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Configuration files

All domain objects are immutable and deterministic.
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.currency import (
    RECONCILIATION_EPSILON,
    CurrencyInfo,
    CurrencyRegistry,
    amounts_reconcile,
    convert_to_base,
    to_minor_unit,
)
from ledger_kernel.domain.gl_entry import (
    DocStatus,
    GLEntryInput,
    LineSide,
    PartyType,
    Posting,
    VoucherType,
)
from ledger_kernel.domain.posting_validator import PostingValidator
from ledger_kernel.domain.results import PostingResult, ValidationMode, ValidationResult
from ledger_kernel.domain.reversal import build_reversal
from ledger_kernel.domain.templates import (
    BillTemplate,
    InvoiceTemplate,
    JournalTemplate,
    RecurringTemplate,
    TemplateLine,
    materialize,
    parse_template,
)
from ledger_kernel.domain.values import Currency, ExchangeRate, Money

__all__ = [
    # Value objects
    "Currency",
    "Money",
    "ExchangeRate",
    "CurrencyInfo",
    "CurrencyRegistry",
    "RECONCILIATION_EPSILON",
    "amounts_reconcile",
    "convert_to_base",
    "to_minor_unit",
    # GL model
    "VoucherType",
    "PartyType",
    "DocStatus",
    "LineSide",
    "GLEntryInput",
    "Posting",
    # Validation
    "PostingValidator",
    "PostingResult",
    "ValidationResult",
    "ValidationMode",
    "build_reversal",
    # Recurring templates
    "TemplateLine",
    "JournalTemplate",
    "InvoiceTemplate",
    "BillTemplate",
    "RecurringTemplate",
    "parse_template",
    "materialize",
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
]
