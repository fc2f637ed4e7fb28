"""
Provider protocols and in-memory implementations.

Responsibility:
    Declares the three seams the payment service depends on (where
    outstanding documents come from, where exchange rates come from, and
    where an allocation is committed) and ships dict-backed versions of
    each for tests and single-process tools.

Architecture position:
    Services -- imperative shell.  The SQLAlchemy implementations of the
    same protocols live in ``ledger_services.sql_store``.

Invariants enforced:
    - Commit is all-or-nothing: every allocated document is version-checked
      against the snapshot before any of them is updated.
    - Outstanding balances never go negative.

Failure modes:
    - StaleSnapshotError from ``commit`` / ``record_reversal`` when a
      document changed after the snapshot was read.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from ledger_engines.outstanding import (
    PAID_TOLERANCE,
    DocumentKind,
    OutstandingDocument,
    derive_status,
)
from ledger_engines.payment_allocation import AllocationOutcome
from ledger_kernel.domain.gl_entry import GLEntryInput, Posting
from ledger_kernel.exceptions import StaleSnapshotError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.providers")

_ZERO = Decimal("0")


@runtime_checkable
class OutstandingTargetsProvider(Protocol):
    """Source of the open invoices or bills a payment is allocated against."""

    def list_outstanding(
        self,
        counterparty_id: str,
        company_id: str | None,
        kind: DocumentKind,
    ) -> list[OutstandingDocument]: ...


@runtime_checkable
class ExchangeRateProvider(Protocol):
    """Source of conversion rates; None when no rate is known for the date."""

    def get_rate(
        self, from_currency: str, to_currency: str, on_date: date
    ) -> Decimal | None: ...


@runtime_checkable
class LedgerStore(Protocol):
    """Persists allocations and GL lines atomically."""

    def commit(
        self, outcome: AllocationOutcome, snapshot: Sequence[OutstandingDocument]
    ) -> None: ...

    def load_lines(self, voucher_no: str) -> list[GLEntryInput]: ...

    def record_reversal(self, reversal: Posting, as_of: date) -> None: ...


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def allocated_per_document(outcome: AllocationOutcome) -> dict[str, Decimal]:
    """Total allocated per document id; a manual request may repeat an id."""
    totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    for entry in outcome.entries:
        totals[entry.invoice_id] += entry.allocated_amount
    return dict(totals)


def restored_per_document(reversal: Posting) -> dict[str, Decimal]:
    """
    Amount each settled document gets back when a payment is reversed.

    Only party lines that point at a document count.  The amount is read in
    the document's currency: the transaction tier when present, else base.
    """
    totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    for line in reversal.lines:
        if line.against_voucher is None or line.is_advance:
            continue
        if line.transaction_currency is not None:
            amount = (
                line.debit_in_transaction_currency
                or line.credit_in_transaction_currency
                or _ZERO
            )
        else:
            amount = line.amount
        totals[line.against_voucher] += amount
    return dict(totals)


def snapshot_by_id(
    outcome: AllocationOutcome, snapshot: Sequence[OutstandingDocument]
) -> dict[str, OutstandingDocument]:
    """Snapshot documents touched by ``outcome``, keyed by id."""
    wanted = {entry.invoice_id for entry in outcome.entries}
    return {doc.id: doc for doc in snapshot if doc.id in wanted}


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryOutstandingTargets:
    """Dict-backed outstanding documents keyed by id."""

    def __init__(self, documents: Sequence[OutstandingDocument] = ()):
        self._documents: dict[str, OutstandingDocument] = {d.id: d for d in documents}

    def add(self, document: OutstandingDocument) -> None:
        self._documents[document.id] = document

    def get(self, document_id: str) -> OutstandingDocument | None:
        return self._documents.get(document_id)

    def replace(self, document: OutstandingDocument) -> None:
        if document.id not in self._documents:
            raise KeyError(document.id)
        self._documents[document.id] = document

    def list_outstanding(
        self,
        counterparty_id: str,
        company_id: str | None,
        kind: DocumentKind,
    ) -> list[OutstandingDocument]:
        return sorted(
            (
                d
                for d in self._documents.values()
                if d.counterparty_id == counterparty_id
                and d.kind is kind
                and d.is_open
                and (company_id is None or d.company_id in (None, company_id))
            ),
            key=lambda d: d.id,
        )


class StaticExchangeRates:
    """
    Fixed rate table.

    A pair missing in one direction is answered from the inverse pair when
    that is present.
    """

    def __init__(self, rates: Mapping[tuple[str, str], Decimal] | None = None):
        self._rates: dict[tuple[str, str], Decimal] = {
            pair: Decimal(str(rate)) for pair, rate in (rates or {}).items()
        }

    def set_rate(self, from_currency: str, to_currency: str, rate: Decimal) -> None:
        self._rates[(from_currency, to_currency)] = Decimal(str(rate))

    def get_rate(
        self, from_currency: str, to_currency: str, on_date: date
    ) -> Decimal | None:
        if from_currency == to_currency:
            return Decimal("1")
        rate = self._rates.get((from_currency, to_currency))
        if rate is not None:
            return rate
        inverse = self._rates.get((to_currency, from_currency))
        if inverse:
            return Decimal("1") / inverse
        return None


class InMemoryLedgerStore:
    """
    Ledger store over an InMemoryOutstandingTargets.

    A lock makes check-then-apply atomic across threads, which is the same
    guarantee the SQL store gets from row locks.
    """

    def __init__(
        self,
        targets: InMemoryOutstandingTargets,
        paid_tolerance: Decimal = PAID_TOLERANCE,
    ):
        self.targets = targets
        self.paid_tolerance = paid_tolerance
        self.gl_entries: list[GLEntryInput] = []
        self.postings: list[Posting] = []
        self._lock = threading.Lock()

    def commit(
        self, outcome: AllocationOutcome, snapshot: Sequence[OutstandingDocument]
    ) -> None:
        allocated = allocated_per_document(outcome)
        seen = snapshot_by_id(outcome, snapshot)

        with self._lock:
            for doc_id in sorted(allocated):
                expected = seen[doc_id]
                current = self.targets.get(doc_id)
                self._check_fresh(expected, current)

            for doc_id in sorted(allocated):
                current = self.targets.get(doc_id)
                assert current is not None
                self.targets.replace(
                    replace(
                        current,
                        outstanding_amount=current.outstanding_amount - allocated[doc_id],
                        version=current.version + 1,
                    )
                )

            self.gl_entries.extend(outcome.posting.lines)
            self.postings.append(outcome.posting)

        logger.info(
            "allocation_committed",
            extra={
                "payment_id": outcome.payment_id,
                "document_count": len(allocated),
                "line_count": outcome.posting.line_count,
            },
        )

    def load_lines(self, voucher_no: str) -> list[GLEntryInput]:
        with self._lock:
            return [line for line in self.gl_entries if line.voucher_no == voucher_no]

    def record_reversal(self, reversal: Posting, as_of: date) -> None:
        restored = restored_per_document(reversal)
        with self._lock:
            for doc_id in sorted(restored):
                current = self.targets.get(doc_id)
                if current is None:
                    raise StaleSnapshotError(doc_id, 0, -1)
                outstanding = current.outstanding_amount + restored[doc_id]
                self.targets.replace(
                    replace(current, outstanding_amount=outstanding, version=current.version + 1)
                )
            self.gl_entries.extend(reversal.lines)
            self.postings.append(reversal)

        logger.info(
            "reversal_committed",
            extra={
                "voucher_no": reversal.voucher_no,
                "document_count": len(restored),
                "line_count": reversal.line_count,
            },
        )

    def status_of(self, document_id: str, as_of: date):
        document = self.targets.get(document_id)
        if document is None:
            raise KeyError(document_id)
        return derive_status(
            document.outstanding_amount,
            document.grand_total,
            document.due_date,
            as_of,
            self.paid_tolerance,
        )

    @staticmethod
    def _check_fresh(
        expected: OutstandingDocument, current: OutstandingDocument | None
    ) -> None:
        if current is None:
            raise StaleSnapshotError(expected.id, expected.version, -1)
        if (
            current.version != expected.version
            or current.outstanding_amount != expected.outstanding_amount
        ):
            logger.warning(
                "stale_snapshot_detected",
                extra={
                    "document_id": expected.id,
                    "expected_version": expected.version,
                    "actual_version": current.version,
                },
            )
            raise StaleSnapshotError(expected.id, expected.version, current.version)
