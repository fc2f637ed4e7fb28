"""
Module: ledger_engines.outstanding
Responsibility:
    The read-only projection of open invoices and bills that payment
    allocation works against, plus the status and aging rules derived from
    outstanding_amount and due_date.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain.

Invariants enforced:
    - Purity: "today" is always the ``as_of`` argument; no clock access.
    - outstanding_amount >= 0 on every snapshot.
    - Status precedence: Paid, then Overdue, then Partly Paid, then Unpaid.
      Paid is rounding-tolerant (outstanding <= 0.01).

Failure modes:
    - ValueError on a negative outstanding amount, an unknown currency, or
      a date that falls into no configured aging bucket.

Usage:
    status = derive_status(Decimal("50.00"), Decimal("100.00"),
                           due_date=date(2024, 3, 1), as_of=date(2024, 2, 1))
    # DocumentStatus.PARTLY_PAID
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.gl_entry import PartyType, VoucherType
from ledger_kernel.logging_config import get_logger
from ledger_engines.tracer import traced_engine

logger = get_logger("engines.outstanding")

PAID_TOLERANCE = Decimal("0.01")


class DocumentKind(str, Enum):
    """Which side of the ledger an outstanding document sits on."""

    INVOICE = "Invoice"
    BILL = "Bill"

    @property
    def voucher_type(self) -> VoucherType:
        if self is DocumentKind.INVOICE:
            return VoucherType.SALES_INVOICE
        return VoucherType.PURCHASE_INVOICE

    @property
    def party_type(self) -> PartyType:
        if self is DocumentKind.INVOICE:
            return PartyType.CUSTOMER
        return PartyType.SUPPLIER


class DocumentStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTLY_PAID = "Partly Paid"
    OVERDUE = "Overdue"
    PAID = "Paid"


@dataclass(frozen=True)
class OutstandingDocument:
    """
    Point-in-time snapshot of an open invoice or bill.

    ``version`` is opaque to the engines; the store compares it at commit
    time to detect a concurrent allocation against the same document.
    """

    id: str
    counterparty_id: str
    invoice_date: date
    due_date: date
    grand_total: Decimal
    outstanding_amount: Decimal
    currency: str
    kind: DocumentKind = DocumentKind.INVOICE
    version: int = 0
    company_id: str | None = None

    def __post_init__(self) -> None:
        for name in ("grand_total", "outstanding_amount"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.outstanding_amount < 0:
            raise ValueError(
                f"outstanding_amount cannot be negative: {self.outstanding_amount}"
            )
        object.__setattr__(self, "currency", CurrencyRegistry.validate(self.currency))
        object.__setattr__(self, "kind", DocumentKind(self.kind))

    @property
    def is_open(self) -> bool:
        return self.outstanding_amount > 0

    def status(self, as_of: date) -> DocumentStatus:
        return derive_status(
            self.outstanding_amount, self.grand_total, self.due_date, as_of
        )


def derive_status(
    outstanding_amount: Decimal,
    grand_total: Decimal,
    due_date: date,
    as_of: date,
    tolerance: Decimal = PAID_TOLERANCE,
) -> DocumentStatus:
    """Status of a document given its unpaid balance on ``as_of``."""
    if outstanding_amount <= tolerance:
        return DocumentStatus.PAID
    if due_date < as_of:
        return DocumentStatus.OVERDUE
    if outstanding_amount < grand_total:
        return DocumentStatus.PARTLY_PAID
    return DocumentStatus.UNPAID


def status_after_allocation(
    document: OutstandingDocument,
    allocated: Decimal,
    as_of: date,
    tolerance: Decimal = PAID_TOLERANCE,
) -> DocumentStatus:
    """Status the store should record once ``allocated`` has been applied."""
    return derive_status(
        document.outstanding_amount - allocated,
        document.grand_total,
        document.due_date,
        as_of,
        tolerance,
    )


# ---------------------------------------------------------------------------
# Aging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgeBucket:
    """
    A contiguous range of days past due.

    ``max_days`` of None means unbounded (e.g. 90+).
    """

    name: str
    min_days: int
    max_days: int | None

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, days_overdue: int) -> bool:
        if days_overdue < self.min_days:
            return False
        return self.max_days is None or days_overdue <= self.max_days


STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("Not Due", 0, 0),
    AgeBucket("1-30", 1, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("90+", 91, None),
)


def days_overdue(due_date: date, as_of: date) -> int:
    """Whole days past due; 0 when not yet due."""
    return max(0, (as_of - due_date).days)


def aging_bucket(
    due_date: date,
    as_of: date,
    buckets: Sequence[AgeBucket] = STANDARD_BUCKETS,
) -> AgeBucket:
    days = days_overdue(due_date, as_of)
    for bucket in buckets:
        if bucket.contains(days):
            return bucket
    raise ValueError(f"No aging bucket for {days} days overdue")


@traced_engine("aging_summary", "1.0", fingerprint_fields=("documents", "as_of"))
def aging_summary(
    documents: Iterable[OutstandingDocument],
    as_of: date,
    buckets: Sequence[AgeBucket] = STANDARD_BUCKETS,
) -> dict[str, Decimal]:
    """
    Total outstanding per aging bucket, every bucket present.

    Documents must share one currency; totals are plain Decimals in it.
    """
    totals = {bucket.name: Decimal("0") for bucket in buckets}
    currencies: set[str] = set()
    count = 0
    for document in documents:
        if not document.is_open:
            continue
        currencies.add(document.currency)
        bucket = aging_bucket(document.due_date, as_of, buckets)
        totals[bucket.name] += document.outstanding_amount
        count += 1
    if len(currencies) > 1:
        raise ValueError(f"Cannot age documents in mixed currencies: {sorted(currencies)}")

    logger.info(
        "aging_summary_computed",
        extra={
            "as_of": as_of,
            "document_count": count,
            "totals": {name: str(total) for name, total in totals.items()},
        },
    )
    return totals
