"""
Module: ledger_engines.payment_allocation
Responsibility:
    Turn a payment and a snapshot of the counterparty's open invoices or
    bills into a deterministic list of PaymentAllocationEntry records and
    the balanced GL posting that records them.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Depends on ledger_kernel.domain (values, GL model, PostingValidator)
    and ledger_engines.outstanding.  The outstanding snapshot and the
    exchange rate arrive as arguments; fetching them is the service's job.

Algorithm:
    1. Pre-checks: positive amounts, a usable exchange rate for foreign
       payments, targets in the payment currency, deductions below the
       payment amount.
    2. Open targets only (outstanding_amount > 0, matching document kind).
    3. Manual mode: caller order, ``min(requested, outstanding, remaining)``;
       unknown targets are skipped with a TargetNotFoundError warning.
       Automatic mode: sort by (due_date, id), ``min(outstanding, remaining)``.
    4. Whatever is left is ``unallocated_amount`` and is posted as an
       advance line.  Overpayment is a valid outcome, not an error.
    5. GL lines (RECEIVE shown; PAY is the mirror image):
           DR bank            amount - withheld deductions
           DR deduction       each deduction
           CR party account   each allocation (against_voucher = target)
           CR advance         unallocated amount
       Each line is converted to base currency and rounded to its minor
       unit; the residue of that rounding goes to one is_rounding line.
    6. The line set goes through PostingValidator.  Any rejection rejects
       the whole allocation.

Invariants enforced:
    - Allocation bound: 0 < allocated <= min(outstanding_before, remaining).
    - Conservation: sum(allocated) + unallocated == amount, exactly.
    - Determinism: identical inputs give identical entries and lines.
    - Purity: no clock access; ``as_of`` is an argument.

Failure modes:
    - None raised for bad input; every rejection is an AllocationResult
      carrying typed errors.  ``AllocationResult.unwrap()`` raises.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_engines.outstanding import (
    PAID_TOLERANCE,
    DocumentKind,
    DocumentStatus,
    OutstandingDocument,
    status_after_allocation,
)
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.currency import (
    RECONCILIATION_EPSILON,
    CurrencyRegistry,
    convert_to_base,
    to_minor_unit,
)
from ledger_kernel.domain.gl_entry import (
    GLEntryInput,
    LineSide,
    PartyType,
    Posting,
    VoucherType,
)
from ledger_kernel.domain.posting_validator import PostingValidator
from ledger_kernel.domain.results import ValidationMode
from ledger_kernel.domain.values import Money
from ledger_kernel.exceptions import (
    CurrencyMismatchError,
    DeductionsExceedPaymentError,
    LedgerKernelError,
    MissingExchangeRateError,
    NonPositiveAmountError,
    TargetNotFoundError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.payment_allocation")

_ZERO = Decimal("0")


class PaymentDirection(str, Enum):
    """RECEIVE: a customer pays us. PAY: we pay a supplier."""

    RECEIVE = "Receive"
    PAY = "Pay"

    @property
    def document_kind(self) -> DocumentKind:
        if self is PaymentDirection.RECEIVE:
            return DocumentKind.INVOICE
        return DocumentKind.BILL

    @property
    def bank_side(self) -> LineSide:
        return LineSide.DEBIT if self is PaymentDirection.RECEIVE else LineSide.CREDIT

    @property
    def party_side(self) -> LineSide:
        return LineSide.CREDIT if self is PaymentDirection.RECEIVE else LineSide.DEBIT


class AllocationMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class DeductionKind(str, Enum):
    BANK_CHARGE = "Bank Charge"
    WITHHOLDING_TAX = "Withholding Tax"


@dataclass(frozen=True)
class ManualAllocation:
    target_id: str
    amount: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))


@dataclass(frozen=True)
class PaymentDeduction:
    """
    A bank charge or withholding tax taken out of the payment.

    On RECEIVE every deduction is a debit and reduces the bank line.  On PAY
    withholding tax is a credit (tax payable) and reduces the bank line,
    while a bank charge is a debit (expense) that the bank adds to the
    amount it pays out.
    """

    account_id: str
    amount: Decimal
    kind: DeductionKind = DeductionKind.BANK_CHARGE
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        object.__setattr__(self, "kind", DeductionKind(self.kind))

    def side(self, direction: PaymentDirection) -> LineSide:
        if direction is PaymentDirection.PAY and self.kind is DeductionKind.WITHHOLDING_TAX:
            return LineSide.CREDIT
        return LineSide.DEBIT

    def reduces_bank(self, direction: PaymentDirection) -> bool:
        return direction is PaymentDirection.RECEIVE or self.kind is DeductionKind.WITHHOLDING_TAX


@dataclass(frozen=True)
class PaymentRequest:
    """
    Payment intent as handed to the engine.

    ``amount`` and every allocation and deduction are in ``currency``, which
    is also the currency of the documents being settled.  ``allocations`` of
    None selects automatic FIFO allocation.
    """

    voucher_no: str
    posting_date: date
    direction: PaymentDirection
    amount: Decimal
    currency: str
    bank_account_id: str
    party_account_id: str
    counterparty_id: str
    exchange_rate: Decimal | None = None
    company_id: str | None = None
    party_type: PartyType | None = None
    allocations: tuple[ManualAllocation, ...] | None = None
    deductions: tuple[PaymentDeduction, ...] = ()
    advance_account_id: str | None = None
    round_off_account_id: str | None = None
    remarks: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.exchange_rate is not None and not isinstance(self.exchange_rate, Decimal):
            object.__setattr__(self, "exchange_rate", Decimal(str(self.exchange_rate)))
        object.__setattr__(self, "direction", PaymentDirection(self.direction))
        object.__setattr__(self, "currency", CurrencyRegistry.validate(self.currency))
        if self.allocations is not None:
            object.__setattr__(self, "allocations", tuple(self.allocations))
        object.__setattr__(self, "deductions", tuple(self.deductions))
        if self.party_type is not None:
            object.__setattr__(self, "party_type", PartyType(self.party_type))

    @property
    def payment_id(self) -> str:
        return self.voucher_no

    @property
    def mode(self) -> AllocationMode:
        return AllocationMode.AUTOMATIC if self.allocations is None else AllocationMode.MANUAL


@dataclass(frozen=True)
class PaymentAllocationEntry:
    """
    One allocation against an invoice or bill.

    ``invoice_id`` names the settled document whichever its kind.
    ``snapshot_version`` is the document version the allocation was
    computed from; the store re-checks it at commit.
    """

    invoice_id: str
    allocated_amount: Decimal
    outstanding_before: Decimal
    outstanding_after: Decimal
    snapshot_version: int = 0

    @property
    def closes_document(self) -> bool:
        return self.outstanding_after == _ZERO


@dataclass(frozen=True)
class AllocationOutcome:
    """Successful allocation: entries, advance remainder and validated posting."""

    payment_id: str
    currency: str
    mode: AllocationMode
    entries: tuple[PaymentAllocationEntry, ...]
    unallocated_amount: Decimal
    posting: Posting
    warnings: tuple[LedgerKernelError, ...] = ()
    status_updates: dict[str, DocumentStatus] = field(default_factory=dict)

    @property
    def total_allocated(self) -> Decimal:
        return sum((e.allocated_amount for e in self.entries), _ZERO)

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated_amount == _ZERO


@dataclass(frozen=True)
class AllocationResult:
    """
    Result of PaymentAllocationEngine.allocate().

    Contract:
        Either carries an AllocationOutcome OR at least one error, never both.
    """

    outcome: AllocationOutcome | None
    errors: tuple[LedgerKernelError, ...] = ()

    @classmethod
    def success(cls, outcome: AllocationOutcome) -> AllocationResult:
        return cls(outcome=outcome, errors=())

    @classmethod
    def failure(cls, *errors: LedgerKernelError) -> AllocationResult:
        assert errors, "a failed AllocationResult needs at least one error"
        return cls(outcome=None, errors=tuple(errors))

    @property
    def is_valid(self) -> bool:
        return self.outcome is not None and not self.errors

    @property
    def first_error(self) -> LedgerKernelError | None:
        return self.errors[0] if self.errors else None

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    def unwrap(self) -> AllocationOutcome:
        if self.errors:
            raise self.errors[0]
        assert self.outcome is not None
        return self.outcome

    def __bool__(self) -> bool:
        return self.is_valid


class PaymentAllocationEngine:
    """
    Allocate a payment across outstanding documents and build its posting.

    Contract:
        Pure and stateless after construction; safe to run concurrently for
        different payments.  The snapshot is never mutated: the returned
        entries and status_updates are instructions for the store.
    """

    def __init__(
        self,
        base_currency: str,
        company_id: str | None = None,
        epsilon: Decimal = RECONCILIATION_EPSILON,
        paid_tolerance: Decimal = PAID_TOLERANCE,
        validation_mode: ValidationMode = ValidationMode.FAIL_FAST,
    ):
        self.base_currency = CurrencyRegistry.validate(base_currency)
        self.company_id = company_id
        self.paid_tolerance = paid_tolerance
        self.validation_mode = ValidationMode(validation_mode)
        self.validator = PostingValidator(self.base_currency, company_id, epsilon)

    @traced_engine(
        "payment_allocation",
        "1.0",
        fingerprint_fields=("request", "targets", "as_of"),
    )
    def allocate(
        self,
        request: PaymentRequest,
        targets: Sequence[OutstandingDocument],
        *,
        as_of: date,
    ) -> AllocationResult:
        """
        Allocate ``request`` against the ``targets`` snapshot.

        Args:
            request: The payment.
            targets: Outstanding documents for the counterparty, as read
                from the store.  Closed documents and documents of the
                other kind are ignored.
            as_of: "Today" for the status of each settled document.
        """
        logger.info(
            "allocation_started",
            extra={
                "payment_id": request.payment_id,
                "direction": request.direction.value,
                "amount": str(request.amount),
                "currency": request.currency,
                "mode": request.mode.value,
                "target_count": len(targets),
            },
        )

        kind = request.direction.document_kind
        open_targets = [t for t in targets if t.is_open and t.kind is kind]

        errors = self._precheck(request, open_targets)
        if errors:
            return self._reject(request, errors)

        rate = self._effective_rate(request)
        currency = request.currency

        if request.mode is AllocationMode.MANUAL:
            entries, remaining, warnings = self._allocate_manual(request, open_targets)
        else:
            entries, remaining = self._allocate_fifo(request, open_targets)
            warnings = []

        # INVARIANT: conservation -- allocated + unallocated == amount
        total_allocated = sum(
            (Money.of(e.allocated_amount, currency) for e in entries),
            Money.zero(currency),
        )
        assert total_allocated + remaining == Money.of(request.amount, currency), (
            f"Allocation conservation violated: "
            f"{total_allocated} + {remaining} != {request.amount} {currency}"
        )

        lines = self._build_lines(request, entries, remaining.amount, rate)
        result = self.validator.validate_posting(lines, mode=self.validation_mode)
        if not result.is_valid:
            return self._reject(request, list(result.errors))
        posting = result.unwrap()

        by_id = {t.id: t for t in open_targets}
        status_updates: dict[str, DocumentStatus] = {}
        for entry in entries:
            document = by_id[entry.invoice_id]
            allocated_to_doc = document.outstanding_amount - entry.outstanding_after
            status_updates[entry.invoice_id] = status_after_allocation(
                document, allocated_to_doc, as_of, self.paid_tolerance
            )

        outcome = AllocationOutcome(
            payment_id=request.payment_id,
            currency=currency,
            mode=request.mode,
            entries=tuple(entries),
            unallocated_amount=remaining.amount,
            posting=posting,
            warnings=tuple(warnings),
            status_updates=status_updates,
        )

        logger.info(
            "allocation_completed",
            extra={
                "payment_id": request.payment_id,
                "mode": request.mode.value,
                "entry_count": len(entries),
                "total_allocated": str(total_allocated.amount),
                "unallocated": str(remaining.amount),
                "warning_count": len(warnings),
                "line_count": posting.line_count,
                "posting_total": str(posting.total),
            },
        )
        return AllocationResult.success(outcome)

    # ------------------------------------------------------------------
    # Pre-checks
    # ------------------------------------------------------------------

    def _precheck(
        self,
        request: PaymentRequest,
        open_targets: Sequence[OutstandingDocument],
    ) -> list[LedgerKernelError]:
        errors: list[LedgerKernelError] = []

        if request.amount <= _ZERO:
            errors.append(NonPositiveAmountError("amount", request.amount))

        if request.currency != self.base_currency:
            rate = request.exchange_rate
            if rate is None:
                errors.append(
                    MissingExchangeRateError(
                        request.currency,
                        f"exchange_rate is required to convert into {self.base_currency}",
                    )
                )
            elif rate <= _ZERO:
                errors.append(
                    MissingExchangeRateError(
                        request.currency, f"exchange rate must be positive, got {rate}"
                    )
                )

        for i, allocation in enumerate(request.allocations or ()):
            if allocation.amount <= _ZERO:
                errors.append(
                    NonPositiveAmountError(f"allocations[{i}].amount", allocation.amount)
                )

        withheld = _ZERO
        for i, deduction in enumerate(request.deductions):
            if deduction.amount <= _ZERO:
                errors.append(
                    NonPositiveAmountError(f"deductions[{i}].amount", deduction.amount)
                )
            elif deduction.reduces_bank(request.direction):
                withheld += deduction.amount
        if request.amount > _ZERO and withheld >= request.amount:
            errors.append(DeductionsExceedPaymentError(request.amount, withheld))

        if request.allocations is None:
            considered = list(open_targets)
        else:
            wanted = {a.target_id for a in request.allocations}
            considered = [t for t in open_targets if t.id in wanted]
        for target in sorted(considered, key=lambda t: t.id):
            if target.currency != request.currency:
                errors.append(
                    CurrencyMismatchError(target.id, request.currency, target.currency)
                )

        return errors

    def _effective_rate(self, request: PaymentRequest) -> Decimal:
        if request.currency == self.base_currency:
            return Decimal("1")
        assert request.exchange_rate is not None
        return request.exchange_rate

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def _allocate_manual(
        self,
        request: PaymentRequest,
        open_targets: Sequence[OutstandingDocument],
    ) -> tuple[list[PaymentAllocationEntry], Money, list[LedgerKernelError]]:
        """Caller order; excess over the outstanding balance is clamped."""
        currency = request.currency
        remaining = Money.of(request.amount, currency)
        by_id = {t.id: t for t in open_targets}
        # Running balance per target so a repeated id cannot over-allocate.
        balances = {t.id: Money.of(t.outstanding_amount, currency) for t in open_targets}
        entries: list[PaymentAllocationEntry] = []
        warnings: list[LedgerKernelError] = []

        for allocation in request.allocations or ():
            target = by_id.get(allocation.target_id)
            if target is None:
                warning = TargetNotFoundError(allocation.target_id, allocation.amount)
                warnings.append(warning)
                logger.warning(
                    "allocation_target_not_found",
                    extra={
                        "payment_id": request.payment_id,
                        "target_id": allocation.target_id,
                        "requested": str(allocation.amount),
                    },
                )
                continue

            before = balances[target.id]
            requested = Money.of(allocation.amount, currency)
            to_allocate = min(requested, before, remaining)
            if not to_allocate.is_positive:
                continue
            if to_allocate < requested:
                logger.info(
                    "allocation_clamped",
                    extra={
                        "payment_id": request.payment_id,
                        "target_id": target.id,
                        "requested": str(requested.amount),
                        "allocated": str(to_allocate.amount),
                    },
                )

            after = before - to_allocate
            remaining = remaining - to_allocate
            balances[target.id] = after
            entries.append(
                PaymentAllocationEntry(
                    invoice_id=target.id,
                    allocated_amount=to_allocate.amount,
                    outstanding_before=before.amount,
                    outstanding_after=after.amount,
                    snapshot_version=target.version,
                )
            )

        return entries, remaining, warnings

    def _allocate_fifo(
        self,
        request: PaymentRequest,
        open_targets: Sequence[OutstandingDocument],
    ) -> tuple[list[PaymentAllocationEntry], Money]:
        """Oldest due date first; ties broken by id."""
        currency = request.currency
        remaining = Money.of(request.amount, currency)
        entries: list[PaymentAllocationEntry] = []

        for target in sorted(open_targets, key=lambda t: (t.due_date, t.id)):
            if not remaining.is_positive:
                break
            before = Money.of(target.outstanding_amount, currency)
            to_allocate = min(before, remaining)
            after = before - to_allocate
            remaining = remaining - to_allocate
            entries.append(
                PaymentAllocationEntry(
                    invoice_id=target.id,
                    allocated_amount=to_allocate.amount,
                    outstanding_before=before.amount,
                    outstanding_after=after.amount,
                    snapshot_version=target.version,
                )
            )

        return entries, remaining

    # ------------------------------------------------------------------
    # GL lines
    # ------------------------------------------------------------------

    def _build_lines(
        self,
        request: PaymentRequest,
        entries: Sequence[PaymentAllocationEntry],
        unallocated: Decimal,
        rate: Decimal,
    ) -> list[GLEntryInput]:
        direction = request.direction
        kind = direction.document_kind
        party_type = request.party_type or kind.party_type
        party = {"party_type": party_type, "party": request.counterparty_id}

        bank_amount = request.amount
        for deduction in request.deductions:
            if deduction.reduces_bank(direction):
                bank_amount -= deduction.amount
            else:
                bank_amount += deduction.amount

        lines = [
            self._line(
                request,
                request.bank_account_id,
                direction.bank_side,
                bank_amount,
                rate,
                remarks=request.remarks,
            )
        ]

        for deduction in request.deductions:
            lines.append(
                self._line(
                    request,
                    deduction.account_id,
                    deduction.side(direction),
                    deduction.amount,
                    rate,
                    remarks=deduction.description or f"{deduction.kind.value} - {request.voucher_no}",
                )
            )

        for entry in entries:
            lines.append(
                self._line(
                    request,
                    request.party_account_id,
                    direction.party_side,
                    entry.allocated_amount,
                    rate,
                    against_voucher=entry.invoice_id,
                    against_voucher_type=kind.voucher_type,
                    **party,
                )
            )

        if unallocated > _ZERO:
            lines.append(
                self._line(
                    request,
                    request.advance_account_id or request.party_account_id,
                    direction.party_side,
                    unallocated,
                    rate,
                    is_advance=True,
                    remarks=f"Advance - {request.voucher_no}",
                    **party,
                )
            )

        rounding = self._rounding_line(request, lines)
        if rounding is not None:
            lines.append(rounding)
        return lines

    def _line(
        self,
        request: PaymentRequest,
        account_id: str,
        side: LineSide,
        amount: Decimal,
        rate: Decimal,
        **extra,
    ) -> GLEntryInput:
        """One payment line, converted to base currency."""
        base = self.base_currency
        foreign = request.currency != base
        base_amount = convert_to_base(amount, rate, base) if foreign else to_minor_unit(amount, base)

        sides = {
            "debit": base_amount if side is LineSide.DEBIT else None,
            "credit": base_amount if side is LineSide.CREDIT else None,
            "debit_in_account_currency": base_amount if side is LineSide.DEBIT else None,
            "credit_in_account_currency": base_amount if side is LineSide.CREDIT else None,
        }
        if foreign:
            sides.update(
                transaction_currency=request.currency,
                transaction_exchange_rate=rate,
                debit_in_transaction_currency=amount if side is LineSide.DEBIT else None,
                credit_in_transaction_currency=amount if side is LineSide.CREDIT else None,
            )

        return GLEntryInput(
            account_id=account_id,
            voucher_type=VoucherType.PAYMENT_ENTRY,
            voucher_no=request.voucher_no,
            posting_date=request.posting_date,
            account_currency=base,
            company_id=request.company_id or self.company_id,
            **sides,
            **extra,
        )

    def _rounding_line(
        self, request: PaymentRequest, lines: Sequence[GLEntryInput]
    ) -> GLEntryInput | None:
        """Absorb per-line conversion residue, at most one minor unit per line."""
        residue = sum((line.debit_amount for line in lines), _ZERO) - sum(
            (line.credit_amount for line in lines), _ZERO
        )
        if residue == _ZERO or request.round_off_account_id is None:
            return None
        max_residue = CurrencyRegistry.get_minor_unit(self.base_currency) * len(lines)
        if abs(residue) > max_residue:
            return None

        logger.info(
            "allocation_rounding_line",
            extra={
                "payment_id": request.payment_id,
                "residue": str(residue),
                "account_id": request.round_off_account_id,
            },
        )
        amount = abs(residue)
        debit = amount if residue < _ZERO else None
        credit = amount if residue > _ZERO else None
        return GLEntryInput(
            account_id=request.round_off_account_id,
            voucher_type=VoucherType.PAYMENT_ENTRY,
            voucher_no=request.voucher_no,
            posting_date=request.posting_date,
            debit=debit,
            credit=credit,
            account_currency=self.base_currency,
            is_rounding=True,
            remarks=f"Exchange rounding - {request.voucher_no}",
            company_id=request.company_id or self.company_id,
        )

    def _reject(
        self, request: PaymentRequest, errors: list[LedgerKernelError]
    ) -> AllocationResult:
        if self.validation_mode is ValidationMode.FAIL_FAST:
            errors = errors[:1]
        logger.warning(
            "allocation_rejected",
            extra={
                "payment_id": request.payment_id,
                "error_count": len(errors),
                "error_codes": [e.code for e in errors],
            },
        )
        return AllocationResult.failure(*errors)
