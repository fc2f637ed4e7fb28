"""
Module: ledger_kernel.models.outstanding_document
Responsibility: ORM persistence for open invoices and bills -- the rows the
    payment allocation snapshot is read from and written back to.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - outstanding_amount >= 0.
    - ``version`` is SQLAlchemy's version_id_col: every UPDATE bumps it and
      carries ``WHERE version = :old``, so a concurrent writer that read the
      same row fails its flush instead of overwriting.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class OutstandingDocumentRow(TrackedBase):
    """A sales invoice or purchase bill with its unpaid balance."""

    __tablename__ = "outstanding_documents"

    __table_args__ = (
        Index("idx_outstanding_counterparty", "company_id", "counterparty_id", "kind"),
        CheckConstraint("outstanding_amount >= 0", name="ck_outstanding_non_negative"),
    )

    document_no: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    grand_total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    outstanding_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Unpaid")

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<OutstandingDocumentRow {self.document_no} "
            f"{self.outstanding_amount}/{self.grand_total} {self.currency} v{self.version}>"
        )
