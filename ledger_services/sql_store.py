"""
SQLAlchemy-backed outstanding documents and ledger store.

Responsibility:
    Reads outstanding snapshots from ``outstanding_documents`` and commits
    allocations: re-checks each allocated document under a row lock,
    decrements its outstanding balance, records its new status and appends
    the posting's GL lines to ``gl_entries``.

Architecture position:
    Services -- imperative shell.  Implements the protocols declared in
    ``ledger_services.providers``.

Invariants enforced:
    - Flush only: the store never commits or rolls back the caller's
      transaction (``ledger_kernel.db.session_scope``).  Its writes run in
      a SAVEPOINT that a version conflict rolls back on its own.
    - Optimistic concurrency: rows are selected ``FOR UPDATE`` in id order
      and compared against the snapshot's version and outstanding amount.
      The row's ``version_id_col`` catches any writer that slipped past
      the lock (SQLite has no row locks).
    - GL rows are insert-only; the ORM immutability listeners reject any
      later UPDATE or DELETE.

Failure modes:
    - StaleSnapshotError when a document's version or balance moved since
      the snapshot, or when its row vanished.

Audit relevance:
    ``allocation_committed`` and ``reversal_committed`` carry the payment
    id, the touched document count and the number of GL rows written.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

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
from ledger_kernel.models.gl_entry import GLEntryRow
from ledger_kernel.models.outstanding_document import OutstandingDocumentRow
from ledger_services.providers import (
    allocated_per_document,
    restored_per_document,
    snapshot_by_id,
)

logger = get_logger("services.sql_store")


def document_from_row(row: OutstandingDocumentRow) -> OutstandingDocument:
    return OutstandingDocument(
        id=row.document_no,
        counterparty_id=row.counterparty_id,
        invoice_date=row.invoice_date,
        due_date=row.due_date,
        grand_total=row.grand_total,
        outstanding_amount=row.outstanding_amount,
        currency=row.currency,
        kind=DocumentKind(row.kind),
        version=row.version,
        company_id=row.company_id,
    )


def row_from_line(
    line: GLEntryInput, line_no: int = 0, created_by: str | None = None
) -> GLEntryRow:
    """ORM row for a validated GL line.  Absent sides are stored as zero."""
    return GLEntryRow(
        company_id=line.company_id,
        account_id=line.account_id,
        voucher_type=line.voucher_type.value,
        voucher_no=line.voucher_no,
        posting_date=line.posting_date,
        line_no=line_no,
        debit=line.debit_amount,
        credit=line.credit_amount,
        account_currency=line.account_currency,
        debit_in_account_currency=line.account_debit,
        credit_in_account_currency=line.account_credit,
        transaction_currency=line.transaction_currency,
        debit_in_transaction_currency=line.debit_in_transaction_currency,
        credit_in_transaction_currency=line.credit_in_transaction_currency,
        transaction_exchange_rate=line.transaction_exchange_rate,
        against_voucher=line.against_voucher,
        against_voucher_type=(
            line.against_voucher_type.value if line.against_voucher_type else None
        ),
        party_type=line.party_type.value if line.party_type else None,
        party=line.party,
        cost_center=line.cost_center,
        project=line.project,
        due_date=line.due_date,
        remarks=line.remarks,
        is_opening=line.is_opening,
        is_advance=line.is_advance,
        is_cancelled=line.is_cancelled,
        is_rounding=line.is_rounding,
        docstatus=int(line.docstatus),
        created_by=created_by,
    )


def line_from_row(row: GLEntryRow) -> GLEntryInput:
    """Domain line for a stored row.  Zero sides come back as None."""

    def side(value: Decimal | None) -> Decimal | None:
        return value if value else None

    return GLEntryInput(
        account_id=row.account_id,
        voucher_type=row.voucher_type,
        voucher_no=row.voucher_no,
        posting_date=row.posting_date,
        debit=side(row.debit),
        credit=side(row.credit),
        account_currency=row.account_currency,
        debit_in_account_currency=side(row.debit_in_account_currency),
        credit_in_account_currency=side(row.credit_in_account_currency),
        transaction_currency=row.transaction_currency,
        debit_in_transaction_currency=row.debit_in_transaction_currency,
        credit_in_transaction_currency=row.credit_in_transaction_currency,
        transaction_exchange_rate=row.transaction_exchange_rate,
        against_voucher=row.against_voucher,
        against_voucher_type=row.against_voucher_type,
        party_type=row.party_type,
        party=row.party,
        cost_center=row.cost_center,
        project=row.project,
        due_date=row.due_date,
        remarks=row.remarks,
        is_opening=row.is_opening,
        is_advance=row.is_advance,
        is_cancelled=row.is_cancelled,
        is_rounding=row.is_rounding,
        docstatus=row.docstatus,
        company_id=row.company_id,
        id=str(row.id),
    )


class SqlOutstandingTargetsProvider:
    """Reads open documents for a counterparty, ordered by document number."""

    def __init__(self, session: Session):
        self.session = session

    def list_outstanding(
        self,
        counterparty_id: str,
        company_id: str | None,
        kind: DocumentKind,
    ) -> list[OutstandingDocument]:
        stmt = (
            select(OutstandingDocumentRow)
            .where(OutstandingDocumentRow.counterparty_id == counterparty_id)
            .where(OutstandingDocumentRow.kind == DocumentKind(kind).value)
            .where(OutstandingDocumentRow.outstanding_amount > 0)
            .order_by(OutstandingDocumentRow.document_no)
            .execution_options(populate_existing=True)
        )
        if company_id is not None:
            stmt = stmt.where(OutstandingDocumentRow.company_id == company_id)
        rows = self.session.execute(stmt).scalars().all()
        return [document_from_row(row) for row in rows]


class SqlLedgerStore:
    """
    Commits allocations and reversals within the caller's transaction.

    Contract:
        Every method flushes and returns; nothing is visible to other
        sessions until the caller commits.  After StaleSnapshotError the
        session is still usable and the caller may retry in it.
    """

    def __init__(
        self,
        session: Session,
        paid_tolerance: Decimal = PAID_TOLERANCE,
        actor: str | None = None,
    ):
        self.session = session
        self.paid_tolerance = paid_tolerance
        self.actor = actor

    def commit(
        self, outcome: AllocationOutcome, snapshot: Sequence[OutstandingDocument]
    ) -> None:
        allocated = allocated_per_document(outcome)
        seen = snapshot_by_id(outcome, snapshot)
        rows = self._lock_rows(sorted(allocated))

        for doc_id in sorted(allocated):
            expected = seen[doc_id]
            row = rows.get(doc_id)
            if row is None:
                raise StaleSnapshotError(doc_id, expected.version, -1)
            if (
                row.version != expected.version
                or row.outstanding_amount != expected.outstanding_amount
            ):
                logger.warning(
                    "stale_snapshot_detected",
                    extra={
                        "payment_id": outcome.payment_id,
                        "document_id": doc_id,
                        "expected_version": expected.version,
                        "actual_version": row.version,
                    },
                )
                raise StaleSnapshotError(doc_id, expected.version, row.version)

        def write() -> None:
            for doc_id in sorted(allocated):
                row = rows[doc_id]
                row.outstanding_amount = row.outstanding_amount - allocated[doc_id]
                row.status = outcome.status_updates[doc_id].value
            self.session.flush()
            self._add_lines(outcome.posting.lines)

        self._write_in_savepoint(write, seen)

        logger.info(
            "allocation_committed",
            extra={
                "payment_id": outcome.payment_id,
                "document_count": len(allocated),
                "line_count": outcome.posting.line_count,
            },
        )

    def load_lines(self, voucher_no: str) -> list[GLEntryInput]:
        rows = self.session.execute(
            select(GLEntryRow)
            .where(GLEntryRow.voucher_no == voucher_no)
            .order_by(GLEntryRow.is_cancelled, GLEntryRow.line_no)
        ).scalars().all()
        return [line_from_row(row) for row in rows]

    def record_reversal(self, reversal: Posting, as_of: date) -> None:
        restored = restored_per_document(reversal)
        rows = self._lock_rows(sorted(restored))

        missing = [doc_id for doc_id in sorted(restored) if doc_id not in rows]
        if missing:
            raise StaleSnapshotError(missing[0], 0, -1)

        def write() -> None:
            for doc_id in sorted(restored):
                row = rows[doc_id]
                row.outstanding_amount = row.outstanding_amount + restored[doc_id]
                row.status = derive_status(
                    row.outstanding_amount,
                    row.grand_total,
                    row.due_date,
                    as_of,
                    self.paid_tolerance,
                ).value
            self.session.flush()
            self._add_lines(reversal.lines)

        self._write_in_savepoint(write, {})

        logger.info(
            "reversal_committed",
            extra={
                "voucher_no": reversal.voucher_no,
                "document_count": len(restored),
                "line_count": reversal.line_count,
            },
        )

    def _lock_rows(self, document_nos: list[str]) -> dict[str, OutstandingDocumentRow]:
        if not document_nos:
            return {}
        rows = self.session.execute(
            select(OutstandingDocumentRow)
            .where(OutstandingDocumentRow.document_no.in_(document_nos))
            .order_by(OutstandingDocumentRow.document_no)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.document_no: row for row in rows}

    def _add_lines(self, lines: Sequence[GLEntryInput]) -> None:
        self.session.add_all(
            row_from_line(line, i, self.actor) for i, line in enumerate(lines)
        )
        self.session.flush()

    def _write_in_savepoint(
        self, write: Callable[[], None], seen: dict[str, OutstandingDocument]
    ) -> None:
        """
        Run ``write`` inside a SAVEPOINT.

        A version conflict at flush rolls back the savepoint only, so the
        caller's transaction stays usable for a retry from a fresh snapshot.
        """
        savepoint = self.session.begin_nested()
        try:
            write()
        except StaleDataError as e:
            # Another session updated a row between our read and our write.
            savepoint.rollback()
            self.session.expire_all()
            doc_id = next(iter(sorted(seen)), "unknown")
            expected = seen[doc_id].version if doc_id in seen else 0
            logger.warning(
                "stale_snapshot_detected",
                extra={"document_id": doc_id, "expected_version": expected, "stage": "flush"},
            )
            raise StaleSnapshotError(doc_id, expected, -1) from e
        savepoint.commit()
