"""
GL entry -- candidate ledger lines and validated postings.

Responsibility:
    GLEntryInput is one proposed side of a transaction as the web layer or
    the allocation engine hands it to the posting validator. Posting is the
    validator's output: the same lines, their totals and a balanced marker.

Architecture position:
    Kernel > Domain -- pure data, zero I/O. Row-shape mapping to and from
    the ``gl_entries`` table lives in ledger_services.sql_store.

Amount conventions:
    ``debit``/``credit`` are base-currency amounts. When the account is in
    the base currency the ``*_in_account_currency`` fields may be omitted and
    default to the base amounts. ``transaction_exchange_rate`` converts
    transaction currency into account currency.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum


class VoucherType(str, Enum):
    """Business documents that generate GL lines."""

    SALES_INVOICE = "Sales Invoice"
    PURCHASE_INVOICE = "Purchase Invoice"
    PAYMENT_ENTRY = "Payment Entry"
    JOURNAL_ENTRY = "Journal Entry"
    PERIOD_CLOSING_VOUCHER = "Period Closing Voucher"
    OPENING_ENTRY = "Opening Entry"
    BANK_RECONCILIATION = "Bank Reconciliation"
    ASSET_DEPRECIATION = "Asset Depreciation"
    DEFERRED_REVENUE = "Deferred Revenue"
    DEFERRED_EXPENSE = "Deferred Expense"
    EXCHANGE_RATE_REVALUATION = "Exchange Rate Revaluation"
    STOCK_ENTRY = "Stock Entry"
    LANDED_COST_VOUCHER = "Landed Cost Voucher"


class PartyType(str, Enum):
    CUSTOMER = "Customer"
    SUPPLIER = "Supplier"
    EMPLOYEE = "Employee"
    OTHER = "Other"


class DocStatus(IntEnum):
    """Submission lifecycle: a submitted line only ever moves to CANCELLED."""

    DRAFT = 0
    SUBMITTED = 1
    CANCELLED = 2


class LineSide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


_AMOUNT_FIELDS = (
    "debit",
    "credit",
    "debit_in_account_currency",
    "credit_in_account_currency",
    "debit_in_transaction_currency",
    "credit_in_transaction_currency",
    "transaction_exchange_rate",
)

_ZERO = Decimal("0")


def _nonzero(value: Decimal | None) -> bool:
    return value is not None and value != _ZERO


@dataclass(frozen=True)
class GLEntryInput:
    """
    One proposed GL line.

    Contract:
        Amount fields are coerced to Decimal (via ``str`` for floats) and
        enum fields accept their string values. No business rule is checked
        here -- that is PostingValidator.validate_line's job, so that a bad
        line can be reported as a typed error instead of failing construction.
    """

    account_id: str
    voucher_type: VoucherType
    voucher_no: str
    posting_date: date
    debit: Decimal | None = None
    credit: Decimal | None = None
    account_currency: str | None = None
    debit_in_account_currency: Decimal | None = None
    credit_in_account_currency: Decimal | None = None
    transaction_currency: str | None = None
    debit_in_transaction_currency: Decimal | None = None
    credit_in_transaction_currency: Decimal | None = None
    transaction_exchange_rate: Decimal | None = None
    against_voucher: str | None = None
    against_voucher_type: VoucherType | None = None
    party_type: PartyType | None = None
    party: str | None = None
    cost_center: str | None = None
    project: str | None = None
    due_date: date | None = None
    remarks: str | None = None
    is_opening: bool = False
    is_advance: bool = False
    is_cancelled: bool = False
    is_rounding: bool = False
    docstatus: DocStatus = DocStatus.SUBMITTED
    company_id: str | None = None
    id: str | None = None

    def __post_init__(self) -> None:
        for name in _AMOUNT_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                try:
                    object.__setattr__(self, name, Decimal(str(value)))
                except (InvalidOperation, ValueError) as e:
                    raise ValueError(f"Invalid {name}: {value!r}") from e

        object.__setattr__(self, "voucher_type", VoucherType(self.voucher_type))
        if self.against_voucher_type is not None:
            object.__setattr__(
                self, "against_voucher_type", VoucherType(self.against_voucher_type)
            )
        if self.party_type is not None:
            object.__setattr__(self, "party_type", PartyType(self.party_type))
        object.__setattr__(self, "docstatus", DocStatus(self.docstatus))

    @property
    def debit_amount(self) -> Decimal:
        return self.debit if self.debit is not None else _ZERO

    @property
    def credit_amount(self) -> Decimal:
        return self.credit if self.credit is not None else _ZERO

    @property
    def side(self) -> LineSide | None:
        """DEBIT or CREDIT for a well-formed line, None otherwise."""
        has_debit = _nonzero(self.debit)
        has_credit = _nonzero(self.credit)
        if has_debit == has_credit:
            return None
        return LineSide.DEBIT if has_debit else LineSide.CREDIT

    @property
    def amount(self) -> Decimal:
        """Base-currency amount on whichever side is set."""
        return self.debit_amount + self.credit_amount

    @property
    def is_zero(self) -> bool:
        return not _nonzero(self.debit) and not _nonzero(self.credit)

    @property
    def account_debit(self) -> Decimal:
        if self.debit_in_account_currency is not None:
            return self.debit_in_account_currency
        return self.debit_amount

    @property
    def account_credit(self) -> Decimal:
        if self.credit_in_account_currency is not None:
            return self.credit_in_account_currency
        return self.credit_amount

    @property
    def has_transaction_amounts(self) -> bool:
        return _nonzero(self.debit_in_transaction_currency) or _nonzero(
            self.credit_in_transaction_currency
        )

    def as_dict(self) -> dict:
        """Plain mapping of every field, enums reduced to their values."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, Enum) else value
        return out


@dataclass(frozen=True)
class Posting:
    """
    A validated, balanced set of GL lines for one voucher.

    Only PostingValidator builds these; ``balanced`` is always True and
    ``total_debit == total_credit`` after rounding to the base currency's
    minor unit.
    """

    voucher_type: VoucherType
    voucher_no: str
    posting_date: date
    base_currency: str
    lines: tuple[GLEntryInput, ...]
    total_debit: Decimal
    total_credit: Decimal
    company_id: str | None = None
    balanced: bool = True

    @property
    def total(self) -> Decimal:
        return self.total_debit

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def lines_against(self, voucher_no: str) -> tuple[GLEntryInput, ...]:
        """Lines settling a given invoice or bill."""
        return tuple(line for line in self.lines if line.against_voucher == voucher_no)

    def lines_for_account(self, account_id: str) -> tuple[GLEntryInput, ...]:
        return tuple(line for line in self.lines if line.account_id == account_id)
