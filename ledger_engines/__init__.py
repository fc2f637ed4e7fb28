"""
Module: ledger_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: payment
    allocation, outstanding-document status and aging, and the tracer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain and ledger_kernel.logging_config.
    MUST NOT import ledger_services or ledger_config.

Invariants enforced:
    - Purity: engines never call ``date.today()``; ``as_of`` is passed in.
    - Decimal-only arithmetic for every amount.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from ledger_engines import PaymentAllocationEngine, PaymentRequest
"""

from ledger_engines.outstanding import (
    PAID_TOLERANCE,
    STANDARD_BUCKETS,
    AgeBucket,
    DocumentKind,
    DocumentStatus,
    OutstandingDocument,
    aging_bucket,
    aging_summary,
    days_overdue,
    derive_status,
    status_after_allocation,
)
from ledger_engines.payment_allocation import (
    AllocationMode,
    AllocationOutcome,
    AllocationResult,
    DeductionKind,
    ManualAllocation,
    PaymentAllocationEngine,
    PaymentAllocationEntry,
    PaymentDeduction,
    PaymentDirection,
    PaymentRequest,
)
from ledger_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Outstanding documents
    "PAID_TOLERANCE",
    "STANDARD_BUCKETS",
    "AgeBucket",
    "DocumentKind",
    "DocumentStatus",
    "OutstandingDocument",
    "aging_bucket",
    "aging_summary",
    "days_overdue",
    "derive_status",
    "status_after_allocation",
    # Payment allocation
    "AllocationMode",
    "AllocationOutcome",
    "AllocationResult",
    "DeductionKind",
    "ManualAllocation",
    "PaymentAllocationEngine",
    "PaymentAllocationEntry",
    "PaymentDeduction",
    "PaymentDirection",
    "PaymentRequest",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
