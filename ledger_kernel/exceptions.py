"""
Typed error hierarchy for the ledger kernel.

Every error has a machine-readable ``code`` class attribute and keeps its
context as attributes, so the web layer can render field-level messages
without parsing strings.

Validation errors are *values*: the posting validator and the allocation
engine put instances of these classes inside their result objects and
never raise them. ``PostingResult.unwrap()`` / ``AllocationResult.unwrap()``
are the only places they become exceptions. The persistence layer raises
``StaleSnapshotError`` and ``ImmutabilityViolationError`` directly because
neither is something the caller can fix by editing the request.

    LedgerKernelError
    |
    +-- LineError
    |   +-- UnbalancedLineError
    |   +-- MissingExchangeRateError
    |   +-- CurrencyReconciliationError
    |   +-- InvalidDateRangeError
    |   +-- DanglingReferenceError
    |
    +-- PostingError
    |   +-- UnbalancedPostingError
    |   +-- EmptyPostingError
    |   +-- InconsistentVoucherError
    |   +-- MultipleRoundingLinesError
    |   +-- AlreadyCancelledError
    |   +-- VoucherNotFoundError
    |
    +-- AllocationError
    |   +-- NonPositiveAmountError
    |   +-- TargetNotFoundError          (reported as a warning, never fatal)
    |   +-- CurrencyMismatchError
    |   +-- DeductionsExceedPaymentError
    |
    +-- TemplateError
    |   +-- UnknownTemplateTypeError
    |
    +-- ConcurrencyError
    |   +-- StaleSnapshotError
    |
    +-- ImmutabilityViolationError

There is deliberately no AllocationExceedsOutstandingError: a manual
allocation larger than the outstanding balance is clamped.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal


class LedgerKernelError(Exception):
    """Base exception for all ledger kernel errors."""

    code: str = "LEDGER_KERNEL_ERROR"


# Line-level errors


class LineError(LedgerKernelError):
    """Base for errors tied to a single GL line."""

    code: str = "LINE_ERROR"
    line_index: int | None = None
    field: str | None = None

    def at(self, line_index: int) -> LineError:
        """Tag this error with the position of the offending line."""
        self.line_index = line_index
        return self


class UnbalancedLineError(LineError):
    """A line has both or neither of debit/credit, or a negative side."""

    code: str = "UNBALANCED_LINE"
    field = "debit"

    def __init__(self, account_id: str, debit: Decimal, credit: Decimal):
        self.account_id = account_id
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Line on account {account_id} must have debit XOR credit "
            f"(debit={debit}, credit={credit})"
        )


class MissingExchangeRateError(LineError):
    """Transaction-currency amount present without a usable exchange rate."""

    code: str = "MISSING_EXCHANGE_RATE"
    field = "transaction_exchange_rate"

    def __init__(self, currency: str | None, reason: str):
        self.currency = currency
        self.reason = reason
        super().__init__(f"Missing exchange rate for {currency or 'transaction currency'}: {reason}")


class CurrencyReconciliationError(LineError):
    """Account-currency amount does not match transaction amount x rate."""

    code: str = "CURRENCY_RECONCILIATION"

    def __init__(
        self,
        side: str,
        account_amount: Decimal,
        expected_amount: Decimal,
        epsilon: Decimal,
    ):
        self.side = side
        self.field = f"{side}_in_account_currency"
        self.account_amount = account_amount
        self.expected_amount = expected_amount
        self.epsilon = epsilon
        super().__init__(
            f"{side}_in_account_currency {account_amount} does not reconcile "
            f"with transaction amount x rate = {expected_amount} (epsilon {epsilon})"
        )


class InvalidDateRangeError(LineError):
    """due_date falls before posting_date."""

    code: str = "INVALID_DATE_RANGE"
    field = "due_date"

    def __init__(self, posting_date: date, due_date: date):
        self.posting_date = posting_date
        self.due_date = due_date
        super().__init__(f"due_date {due_date} cannot be before posting_date {posting_date}")


class DanglingReferenceError(LineError):
    """against_voucher_type set without against_voucher."""

    code: str = "DANGLING_REFERENCE"
    field = "against_voucher"

    def __init__(self, against_voucher_type: str):
        self.against_voucher_type = against_voucher_type
        super().__init__(
            f"against_voucher is required when against_voucher_type "
            f"({against_voucher_type}) is provided"
        )


# Posting-level errors


class PostingError(LedgerKernelError):
    """Base for errors on a whole posting."""

    code: str = "POSTING_ERROR"


class UnbalancedPostingError(PostingError):
    """Total debits differ from total credits in base currency."""

    code: str = "UNBALANCED_POSTING"

    def __init__(self, total_debit: Decimal, total_credit: Decimal, currency: str):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.imbalance = total_debit - total_credit
        self.currency = currency
        super().__init__(
            f"Unbalanced posting in {currency}: debit={total_debit}, "
            f"credit={total_credit}, imbalance={self.imbalance}"
        )


class EmptyPostingError(PostingError):
    """No lines, or every line carries a zero amount."""

    code: str = "EMPTY_POSTING"

    def __init__(self, line_count: int):
        self.line_count = line_count
        super().__init__(
            "Posting has no lines" if line_count == 0
            else f"All {line_count} posting lines are zero"
        )


class InconsistentVoucherError(PostingError):
    """Lines of one posting disagree on voucher_type, voucher_no or posting_date."""

    code: str = "INCONSISTENT_VOUCHER"

    def __init__(self, field: str, values: tuple[str, ...]):
        self.field = field
        self.values = values
        super().__init__(f"Posting lines disagree on {field}: {', '.join(values)}")


class MultipleRoundingLinesError(PostingError):
    """More than one line is flagged as a rounding line."""

    code: str = "MULTIPLE_ROUNDING_LINES"

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Posting has {count} rounding lines; at most one is allowed")


class AlreadyCancelledError(PostingError):
    """A reversal was requested for lines that are already cancelled."""

    code: str = "ALREADY_CANCELLED"

    def __init__(self, voucher_no: str):
        self.voucher_no = voucher_no
        super().__init__(f"Voucher {voucher_no} is already cancelled")


class VoucherNotFoundError(PostingError):
    """No GL lines are stored for the voucher being cancelled."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, voucher_no: str):
        self.voucher_no = voucher_no
        super().__init__(f"No GL lines found for voucher {voucher_no}")


# Allocation errors


class AllocationError(LedgerKernelError):
    """Base for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class NonPositiveAmountError(AllocationError):
    """Payment, allocation or deduction amount is zero or negative."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, field: str, amount: Decimal):
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be positive, got {amount}")


class TargetNotFoundError(AllocationError):
    """Manual allocation references a document not in the outstanding set."""

    code: str = "TARGET_NOT_FOUND"

    def __init__(self, target_id: str, requested_amount: Decimal):
        self.target_id = target_id
        self.requested_amount = requested_amount
        super().__init__(
            f"Allocation target {target_id} is not outstanding; "
            f"requested {requested_amount} skipped"
        )


class CurrencyMismatchError(AllocationError):
    """An outstanding document is not in the payment currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, target_id: str, expected: str, actual: str):
        self.target_id = target_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Document {target_id} is in {actual}, payment is in {expected}"
        )


class DeductionsExceedPaymentError(AllocationError):
    """Bank charges and withholding consume the whole payment."""

    code: str = "DEDUCTIONS_EXCEED_PAYMENT"

    def __init__(self, payment_amount: Decimal, total_deductions: Decimal):
        self.payment_amount = payment_amount
        self.total_deductions = total_deductions
        super().__init__(
            f"Deductions {total_deductions} must be less than payment {payment_amount}"
        )


# Recurring templates


class TemplateError(LedgerKernelError):
    """Base for recurring template errors."""

    code: str = "TEMPLATE_ERROR"


class UnknownTemplateTypeError(TemplateError):
    """Template payload carries an unknown transaction_type discriminant."""

    code: str = "UNKNOWN_TEMPLATE_TYPE"

    def __init__(self, transaction_type: object):
        self.transaction_type = transaction_type
        super().__init__(f"Unknown recurring template type: {transaction_type!r}")


# Store-side concurrency


class ConcurrencyError(LedgerKernelError):
    """Base for concurrency errors raised by the ledger store."""

    code: str = "CONCURRENCY_ERROR"


class StaleSnapshotError(ConcurrencyError):
    """Outstanding balance changed between snapshot and commit."""

    code: str = "STALE_SNAPSHOT"

    def __init__(self, document_id: str, expected_version: int, actual_version: int):
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Document {document_id} changed since snapshot "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ImmutabilityViolationError(LedgerKernelError):
    """Attempted to modify or delete a persisted GL line."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
