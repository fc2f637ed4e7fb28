"""
PaymentService -- receive and pay against outstanding documents.

Responsibility:
    Orchestrates one payment end to end: fill in the exchange rate and the
    company's default advance and round-off accounts, read the outstanding
    snapshot, run PaymentAllocationEngine, and commit through the ledger
    store.  Also cancels a committed payment by posting its reversal, and
    produces the aging report for a counterparty.

Architecture position:
    Services -- imperative shell.  The only layer that touches providers,
    the clock and settings; the engine it drives is pure.

Invariants enforced:
    - ``as_of`` comes from the injected Clock, never from ``date.today()``.
    - Commit is retried from a fresh snapshot when the store reports a
      stale one, at most ``settings.max_commit_retries`` times.  Each retry
      re-runs allocation from scratch.
    - The service never commits a database transaction itself; SQL stores
      flush into the caller's session.

Failure modes:
    - Allocation and posting rejections come back inside AllocationResult /
      PostingResult, never raised.
    - StaleSnapshotError propagates once the retry budget is spent.

Audit relevance:
    Every log line inside a call carries ``payment_id`` and ``company_id``
    via LogContext.  ``payment_commit_retry`` records each stale snapshot.

Usage:
    service = PaymentService(targets, rates, store, get_active_config(), clock)
    result = service.receive(request)
    if result.is_valid:
        print(result.outcome.unallocated_amount)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

from ledger_config.schema import LedgerSettings
from ledger_engines.outstanding import (
    STANDARD_BUCKETS,
    AgeBucket,
    DocumentKind,
    aging_summary,
)
from ledger_engines.payment_allocation import (
    AllocationResult,
    PaymentAllocationEngine,
    PaymentDirection,
    PaymentRequest,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.posting_validator import PostingValidator
from ledger_kernel.domain.results import PostingResult
from ledger_kernel.domain.reversal import build_reversal
from ledger_kernel.exceptions import StaleSnapshotError, VoucherNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.providers import (
    ExchangeRateProvider,
    LedgerStore,
    OutstandingTargetsProvider,
)

logger = get_logger("services.payment")


class PaymentService:
    """
    Payment allocation with store-side conflict retry.

    Contract:
        ``receive`` / ``pay`` return the AllocationResult of the attempt
        that committed, or the first rejection.  A rejected allocation is
        never retried: only a stale snapshot is.
    """

    def __init__(
        self,
        targets: OutstandingTargetsProvider,
        rates: ExchangeRateProvider,
        store: LedgerStore,
        settings: LedgerSettings,
        clock: Clock | None = None,
    ):
        self.targets = targets
        self.rates = rates
        self.store = store
        self.settings = settings
        self.clock = clock or SystemClock()
        self.engine = PaymentAllocationEngine(
            settings.base_currency,
            epsilon=settings.reconciliation_epsilon,
            paid_tolerance=settings.paid_tolerance,
            validation_mode=settings.validation_mode,
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def receive(self, request: PaymentRequest) -> AllocationResult:
        """Customer payment against open invoices."""
        if request.direction is not PaymentDirection.RECEIVE:
            raise ValueError(f"receive() needs a Receive request, got {request.direction.value}")
        return self.process(request)

    def pay(self, request: PaymentRequest) -> AllocationResult:
        """Supplier payment against open bills."""
        if request.direction is not PaymentDirection.PAY:
            raise ValueError(f"pay() needs a Pay request, got {request.direction.value}")
        return self.process(request)

    def process(self, request: PaymentRequest) -> AllocationResult:
        with LogContext.bind(payment_id=request.payment_id, company_id=request.company_id):
            request = self._with_defaults(request)
            as_of = self.clock.today()
            attempts = self.settings.max_commit_retries + 1

            logger.info(
                "payment_started",
                extra={
                    "direction": request.direction.value,
                    "amount": str(request.amount),
                    "currency": request.currency,
                    "counterparty_id": request.counterparty_id,
                    "as_of": as_of,
                },
            )

            for attempt in range(1, attempts + 1):
                snapshot = self.targets.list_outstanding(
                    request.counterparty_id,
                    request.company_id,
                    request.direction.document_kind,
                )
                result = self.engine.allocate(request, snapshot, as_of=as_of)
                if not result.is_valid:
                    return result

                try:
                    self.store.commit(result.unwrap(), snapshot)
                except StaleSnapshotError as e:
                    if attempt == attempts:
                        logger.error(
                            "payment_commit_failed",
                            extra={
                                "attempts": attempt,
                                "document_id": e.document_id,
                                "error_code": e.code,
                            },
                        )
                        raise
                    logger.warning(
                        "payment_commit_retry",
                        extra={
                            "attempt": attempt,
                            "document_id": e.document_id,
                            "expected_version": e.expected_version,
                            "actual_version": e.actual_version,
                        },
                    )
                    continue

                outcome = result.unwrap()
                logger.info(
                    "payment_committed",
                    extra={
                        "attempt": attempt,
                        "entry_count": len(outcome.entries),
                        "total_allocated": str(outcome.total_allocated),
                        "unallocated": str(outcome.unallocated_amount),
                    },
                )
                return result

        raise AssertionError("unreachable: retry loop always returns or raises")

    def _with_defaults(self, request: PaymentRequest) -> PaymentRequest:
        """Fill rate and company default accounts the caller left empty."""
        changes: dict[str, object] = {}

        if request.currency != self.settings.base_currency and request.exchange_rate is None:
            rate = self.rates.get_rate(
                request.currency, self.settings.base_currency, request.posting_date
            )
            if rate is not None:
                changes["exchange_rate"] = rate
            else:
                logger.warning(
                    "exchange_rate_unavailable",
                    extra={
                        "from_currency": request.currency,
                        "to_currency": self.settings.base_currency,
                        "on_date": request.posting_date,
                    },
                )

        accounts = self.settings.accounts_for(request.company_id)
        if accounts is not None:
            if request.round_off_account_id is None and accounts.round_off_account_id:
                changes["round_off_account_id"] = accounts.round_off_account_id
            if request.advance_account_id is None:
                advance = (
                    accounts.customer_advance_account_id
                    if request.direction is PaymentDirection.RECEIVE
                    else accounts.supplier_advance_account_id
                )
                if advance:
                    changes["advance_account_id"] = advance

        return replace(request, **changes) if changes else request

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, voucher_no: str) -> PostingResult:
        """
        Reverse a committed payment and give its documents their balance back.

        A voucher already carrying reversal lines is rejected with
        AlreadyCancelledError.
        """
        with LogContext.bind(payment_id=voucher_no):
            lines = self.store.load_lines(voucher_no)
            if not lines:
                logger.warning("payment_cancel_rejected", extra={"reason": "not_found"})
                return PostingResult.failure(VoucherNotFoundError(voucher_no))

            # Once reversed, the reversal lines are what a second cancel sees.
            cancelled = [line for line in lines if line.is_cancelled]
            validator = PostingValidator(
                self.settings.base_currency, epsilon=self.settings.reconciliation_epsilon
            )
            stored = validator.validate_posting(cancelled or lines)
            if not stored.is_valid:
                return stored

            as_of = self.clock.today()
            reversal = build_reversal(
                stored.unwrap(),
                reversal_date=as_of,
                epsilon=self.settings.reconciliation_epsilon,
            )
            if not reversal.is_valid:
                return reversal

            self.store.record_reversal(reversal.unwrap(), as_of)
            logger.info(
                "payment_cancelled",
                extra={"line_count": reversal.unwrap().line_count, "as_of": as_of},
            )
            return reversal

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def aging_report(
        self,
        counterparty_id: str,
        company_id: str | None = None,
        kind: DocumentKind = DocumentKind.INVOICE,
        as_of: date | None = None,
    ) -> dict[str, Decimal]:
        """Outstanding per aging bucket, using the configured buckets."""
        buckets = self._buckets()
        documents = self.targets.list_outstanding(counterparty_id, company_id, kind)
        return aging_summary(documents, as_of or self.clock.today(), buckets)

    def _buckets(self) -> tuple[AgeBucket, ...]:
        if not self.settings.aging_buckets:
            return STANDARD_BUCKETS
        return tuple(
            AgeBucket(b.name, b.min_days, b.max_days) for b in self.settings.aging_buckets
        )
