"""
PostingValidator -- structural and business-rule checks for GL postings.

Responsibility:
    Accept a candidate posting (ordered GL line inputs) and return either a
    normalized, balanced Posting or the typed reasons it was rejected.

Architecture position:
    Kernel > Domain -- pure, zero I/O. Base currency and company come in
    through the constructor; nothing is read from ambient state.

Invariants enforced:
    - Each line has debit XOR credit, neither negative.
    - Transaction-currency amounts need a currency and a positive rate.
    - Account-currency amount == transaction amount x rate within epsilon,
      or half a minor unit of the account currency when that is coarser.
    - due_date >= posting_date; against_voucher_type needs against_voucher.
    - At least one nonzero line; one voucher per posting; at most one
      rounding line.
    - sum(debit) == sum(credit) in base currency, exactly, after rounding
      both totals to the base currency's minor unit. Epsilon applies only
      to exchange-rate reconciliation.

Failure modes:
    None raised. Every rejection is returned inside a ValidationResult or
    PostingResult. Rejection is idempotent: the same lines always yield the
    same error kinds in the same order.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from ledger_kernel.domain.currency import (
    RECONCILIATION_EPSILON,
    CurrencyRegistry,
    amounts_reconcile,
    to_minor_unit,
)
from ledger_kernel.domain.gl_entry import GLEntryInput, Posting
from ledger_kernel.domain.results import PostingResult, ValidationMode, ValidationResult
from ledger_kernel.exceptions import (
    CurrencyReconciliationError,
    DanglingReferenceError,
    EmptyPostingError,
    InconsistentVoucherError,
    InvalidDateRangeError,
    LedgerKernelError,
    LineError,
    MissingExchangeRateError,
    MultipleRoundingLinesError,
    UnbalancedLineError,
    UnbalancedPostingError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.posting_validator")

_ZERO = Decimal("0")


class PostingValidator:
    """
    Validates GL lines and assembles balanced postings.

    Stateless after construction and safe to share between threads.
    """

    def __init__(
        self,
        base_currency: str,
        company_id: str | None = None,
        epsilon: Decimal = RECONCILIATION_EPSILON,
    ):
        self.base_currency = CurrencyRegistry.validate(base_currency)
        self.company_id = company_id
        self.epsilon = Decimal(str(epsilon))

    # ------------------------------------------------------------------
    # Line level
    # ------------------------------------------------------------------

    def validate_line(self, line: GLEntryInput) -> ValidationResult:
        """Check every per-line invariant, collecting all failures."""
        errors = self._line_errors(line)
        if errors:
            return ValidationResult.failure(*errors)
        return ValidationResult.success()

    def _line_errors(self, line: GLEntryInput) -> list[LineError]:
        errors: list[LineError] = []

        debit = line.debit_amount
        credit = line.credit_amount
        if debit < _ZERO or credit < _ZERO or line.side is None:
            errors.append(UnbalancedLineError(line.account_id, debit, credit))

        if line.has_transaction_amounts:
            rate_error = self._rate_error(line)
            if rate_error is not None:
                errors.append(rate_error)
            else:
                errors.extend(self._reconciliation_errors(line))

        if line.due_date is not None and line.due_date < line.posting_date:
            errors.append(InvalidDateRangeError(line.posting_date, line.due_date))

        if line.against_voucher_type is not None and not line.against_voucher:
            errors.append(DanglingReferenceError(line.against_voucher_type.value))

        return errors

    def _rate_error(self, line: GLEntryInput) -> MissingExchangeRateError | None:
        if not line.transaction_currency:
            return MissingExchangeRateError(None, "transaction_currency is required")
        rate = line.transaction_exchange_rate
        if rate is None:
            return MissingExchangeRateError(
                line.transaction_currency, "transaction_exchange_rate is required"
            )
        if rate <= _ZERO:
            return MissingExchangeRateError(
                line.transaction_currency, f"exchange rate must be positive, got {rate}"
            )
        return None

    def _reconciliation_errors(self, line: GLEntryInput) -> list[CurrencyReconciliationError]:
        rate = line.transaction_exchange_rate
        assert rate is not None
        tolerance = self.tolerance_for(line)
        errors = []
        for side, tx_amount, account_amount in (
            ("debit", line.debit_in_transaction_currency, line.account_debit),
            ("credit", line.credit_in_transaction_currency, line.account_credit),
        ):
            if tx_amount is None:
                continue
            if not amounts_reconcile(account_amount, tx_amount, rate, tolerance):
                errors.append(
                    CurrencyReconciliationError(
                        side, account_amount, tx_amount * rate, tolerance
                    )
                )
        return errors

    def tolerance_for(self, line: GLEntryInput) -> Decimal:
        """
        Reconciliation tolerance for one line.

        Epsilon, widened to half a minor unit of the account currency.  An
        amount rounded half-up to whole yen sits at most 0.5 from the
        exact product.
        """
        currency = line.account_currency or self.base_currency
        half_unit = CurrencyRegistry.get_minor_unit(currency) / 2
        return max(self.epsilon, half_unit)

    # ------------------------------------------------------------------
    # Posting level
    # ------------------------------------------------------------------

    def validate_posting(
        self,
        lines: Sequence[GLEntryInput],
        *,
        mode: ValidationMode = ValidationMode.FAIL_FAST,
    ) -> PostingResult:
        """
        Validate a whole posting.

        Order of checks:
            1. Empty posting (no lines, or every line zero).
            2. Line errors, each tagged with its line index.
            3. Voucher consistency, then the single-rounding-line rule.
            4. Balance: exact equality of rounded base-currency totals.

        FAIL_FAST returns the first error found; EXHAUSTIVE returns all.
        """
        lines = tuple(lines)
        fail_fast = ValidationMode(mode) is ValidationMode.FAIL_FAST
        voucher_no = lines[0].voucher_no if lines else None

        logger.debug(
            "posting_validation_started",
            extra={
                "voucher_no": voucher_no,
                "line_count": len(lines),
                "mode": ValidationMode(mode).value,
            },
        )

        errors: list[LedgerKernelError] = []

        if not lines or all(line.is_zero for line in lines):
            errors.append(EmptyPostingError(len(lines)))
            if fail_fast or not lines:
                return self._reject(voucher_no, errors)

        for index, line in enumerate(lines):
            for error in self._line_errors(line):
                errors.append(error.at(index))
                if fail_fast:
                    return self._reject(voucher_no, errors)

        for error in self._voucher_errors(lines):
            errors.append(error)
            if fail_fast:
                return self._reject(voucher_no, errors)

        rounding_count = sum(1 for line in lines if line.is_rounding)
        if rounding_count > 1:
            errors.append(MultipleRoundingLinesError(rounding_count))
            if fail_fast:
                return self._reject(voucher_no, errors)

        total_debit = to_minor_unit(
            sum((line.debit_amount for line in lines), _ZERO), self.base_currency
        )
        total_credit = to_minor_unit(
            sum((line.credit_amount for line in lines), _ZERO), self.base_currency
        )
        if total_debit != total_credit:
            errors.append(
                UnbalancedPostingError(total_debit, total_credit, self.base_currency)
            )

        if errors:
            return self._reject(voucher_no, errors)

        first = lines[0]
        posting = Posting(
            voucher_type=first.voucher_type,
            voucher_no=first.voucher_no,
            posting_date=first.posting_date,
            base_currency=self.base_currency,
            lines=lines,
            total_debit=total_debit,
            total_credit=total_credit,
            company_id=self.company_id or first.company_id,
        )

        logger.info(
            "posting_validated",
            extra={
                "voucher_no": posting.voucher_no,
                "voucher_type": posting.voucher_type.value,
                "line_count": posting.line_count,
                "total": str(posting.total),
                "currency": self.base_currency,
            },
        )
        return PostingResult.success(posting)

    def _voucher_errors(self, lines: tuple[GLEntryInput, ...]) -> list[InconsistentVoucherError]:
        errors = []
        for field_name, getter in (
            ("voucher_type", lambda line: line.voucher_type.value),
            ("voucher_no", lambda line: line.voucher_no),
            ("posting_date", lambda line: line.posting_date.isoformat()),
        ):
            distinct = _distinct(getter(line) for line in lines)
            if len(distinct) > 1:
                errors.append(InconsistentVoucherError(field_name, distinct))

        if self.company_id is not None:
            companies = _distinct(
                line.company_id for line in lines if line.company_id is not None
            )
            foreign = tuple(c for c in companies if c != self.company_id)
            if foreign:
                errors.append(
                    InconsistentVoucherError("company_id", (self.company_id, *foreign))
                )
        return errors

    def _reject(
        self, voucher_no: str | None, errors: list[LedgerKernelError]
    ) -> PostingResult:
        logger.warning(
            "posting_rejected",
            extra={
                "voucher_no": voucher_no,
                "error_count": len(errors),
                "error_codes": [e.code for e in errors],
            },
        )
        return PostingResult.failure(*errors)


def _distinct(values) -> tuple[str, ...]:
    """Distinct values in first-seen order."""
    return tuple(dict.fromkeys(values))
