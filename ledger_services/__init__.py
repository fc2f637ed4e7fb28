"""
Module: ledger_services
Responsibility:
    Imperative shell around the pure engines: provider protocols, the
    in-memory and SQLAlchemy ledger stores, and PaymentService.

Architecture position:
    Services -- top layer.  May import ledger_kernel, ledger_engines and
    ledger_config.  Nothing below imports from here.
"""

from ledger_services.payment_service import PaymentService
from ledger_services.providers import (
    ExchangeRateProvider,
    InMemoryLedgerStore,
    InMemoryOutstandingTargets,
    LedgerStore,
    OutstandingTargetsProvider,
    StaticExchangeRates,
)
from ledger_services.sql_store import (
    SqlLedgerStore,
    SqlOutstandingTargetsProvider,
    document_from_row,
    line_from_row,
    row_from_line,
)

__all__ = [
    "PaymentService",
    # Protocols
    "ExchangeRateProvider",
    "LedgerStore",
    "OutstandingTargetsProvider",
    # In-memory
    "InMemoryLedgerStore",
    "InMemoryOutstandingTargets",
    "StaticExchangeRates",
    # SQLAlchemy
    "SqlLedgerStore",
    "SqlOutstandingTargetsProvider",
    "document_from_row",
    "line_from_row",
    "row_from_line",
]
