"""
Module: ledger_kernel.models.gl_entry
Responsibility: ORM persistence for submitted GL lines -- the authoritative
    financial record.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: rows are never updated or deleted once flushed
      (listeners in db/immutability.py).  Cancellation inserts reversing
      rows with is_cancelled=True instead.
    - Balance and currency reconciliation are checked by PostingValidator
      before any row reaches this table.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class GLEntryRow(TrackedBase):
    """One persisted debit or credit line."""

    __tablename__ = "gl_entries"

    __table_args__ = (
        Index("idx_gl_voucher", "voucher_type", "voucher_no"),
        Index("idx_gl_account_date", "account_id", "posting_date"),
        Index("idx_gl_against_voucher", "against_voucher"),
    )

    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)

    voucher_type: Mapped[str] = mapped_column(String(50), nullable=False)
    voucher_no: Mapped[str] = mapped_column(String(100), nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Base currency
    debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    # Account currency
    account_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    debit_in_account_currency: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    credit_in_account_currency: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    # Transaction currency
    transaction_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    debit_in_transaction_currency: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True
    )
    credit_in_transaction_currency: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True
    )
    transaction_exchange_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True
    )

    # Linkage
    against_voucher: Mapped[str | None] = mapped_column(String(100), nullable=True)
    against_voucher_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Dimensions
    party_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    party: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project: Mapped[str | None] = mapped_column(String(100), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    remarks: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Lifecycle
    is_opening: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_advance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_rounding: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    docstatus: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<GLEntryRow {self.voucher_no} {self.account_id} "
            f"Dr {self.debit} Cr {self.credit}>"
        )
