"""
Recurring transaction templates as tagged variants.

A stored template is a mapping keyed by the discriminant
``transaction_type``. ``parse_template`` turns it into one of the frozen
variants below; ``materialize`` turns a variant into the candidate GL lines
for one run, which the caller then hands to PostingValidator.

Scheduling (when a template fires) is not handled here.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

from ledger_kernel.domain.gl_entry import GLEntryInput, PartyType, VoucherType
from ledger_kernel.exceptions import UnknownTemplateTypeError


@dataclass(frozen=True)
class TemplateLine:
    account_id: str
    debit: Decimal | None = None
    credit: Decimal | None = None
    cost_center: str | None = None
    project: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class JournalTemplate:
    transaction_type: ClassVar[VoucherType] = VoucherType.JOURNAL_ENTRY

    lines: tuple[TemplateLine, ...]
    company_id: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class InvoiceTemplate:
    """Recurring sales invoice: DR receivable / CR income."""

    transaction_type: ClassVar[VoucherType] = VoucherType.SALES_INVOICE

    customer: str
    receivable_account_id: str
    income_account_id: str
    amount: Decimal
    due_in_days: int = 30
    cost_center: str | None = None
    company_id: str | None = None


@dataclass(frozen=True)
class BillTemplate:
    """Recurring purchase invoice: DR expense / CR payable."""

    transaction_type: ClassVar[VoucherType] = VoucherType.PURCHASE_INVOICE

    supplier: str
    payable_account_id: str
    expense_account_id: str
    amount: Decimal
    due_in_days: int = 30
    cost_center: str | None = None
    company_id: str | None = None


RecurringTemplate = JournalTemplate | InvoiceTemplate | BillTemplate


def _decimal(value: Any, label: str) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid {label}: {value!r}") from e


def _parse_line(data: Mapping[str, Any]) -> TemplateLine:
    return TemplateLine(
        account_id=data["account_id"],
        debit=_decimal(data.get("debit"), "debit"),
        credit=_decimal(data.get("credit"), "credit"),
        cost_center=data.get("cost_center"),
        project=data.get("project"),
        remarks=data.get("remarks"),
    )


def parse_template(data: Mapping[str, Any]) -> RecurringTemplate:
    """
    Parse a stored template payload.

    Raises:
        UnknownTemplateTypeError: ``transaction_type`` is missing or not a
            supported variant.
        ValueError: a required field is missing or malformed.
    """
    raw_type = data.get("transaction_type")
    try:
        kind = VoucherType(raw_type)
    except ValueError:
        raise UnknownTemplateTypeError(raw_type) from None

    try:
        match kind:
            case VoucherType.JOURNAL_ENTRY:
                lines = tuple(_parse_line(line) for line in data["lines"])
                if not lines:
                    raise ValueError("Journal template needs at least one line")
                return JournalTemplate(
                    lines=lines,
                    company_id=data.get("company_id"),
                    remarks=data.get("remarks"),
                )
            case VoucherType.SALES_INVOICE:
                return InvoiceTemplate(
                    customer=data["customer"],
                    receivable_account_id=data["receivable_account_id"],
                    income_account_id=data["income_account_id"],
                    amount=_decimal(data["amount"], "amount"),
                    due_in_days=int(data.get("due_in_days", 30)),
                    cost_center=data.get("cost_center"),
                    company_id=data.get("company_id"),
                )
            case VoucherType.PURCHASE_INVOICE:
                return BillTemplate(
                    supplier=data["supplier"],
                    payable_account_id=data["payable_account_id"],
                    expense_account_id=data["expense_account_id"],
                    amount=_decimal(data["amount"], "amount"),
                    due_in_days=int(data.get("due_in_days", 30)),
                    cost_center=data.get("cost_center"),
                    company_id=data.get("company_id"),
                )
            case _:
                raise UnknownTemplateTypeError(raw_type)
    except KeyError as e:
        raise ValueError(f"{kind.value} template is missing field {e.args[0]!r}") from e


def materialize(
    template: RecurringTemplate, posting_date: date, voucher_no: str
) -> tuple[GLEntryInput, ...]:
    """Candidate GL lines for one run of ``template`` on ``posting_date``."""
    match template:
        case JournalTemplate(lines=lines, company_id=company_id, remarks=remarks):
            return tuple(
                GLEntryInput(
                    account_id=line.account_id,
                    voucher_type=VoucherType.JOURNAL_ENTRY,
                    voucher_no=voucher_no,
                    posting_date=posting_date,
                    debit=line.debit,
                    credit=line.credit,
                    cost_center=line.cost_center,
                    project=line.project,
                    remarks=line.remarks or remarks,
                    company_id=company_id,
                )
                for line in lines
            )
        case InvoiceTemplate():
            due = posting_date + timedelta(days=template.due_in_days)
            return (
                GLEntryInput(
                    account_id=template.receivable_account_id,
                    voucher_type=VoucherType.SALES_INVOICE,
                    voucher_no=voucher_no,
                    posting_date=posting_date,
                    debit=template.amount,
                    party_type=PartyType.CUSTOMER,
                    party=template.customer,
                    due_date=due,
                    company_id=template.company_id,
                ),
                GLEntryInput(
                    account_id=template.income_account_id,
                    voucher_type=VoucherType.SALES_INVOICE,
                    voucher_no=voucher_no,
                    posting_date=posting_date,
                    credit=template.amount,
                    cost_center=template.cost_center,
                    company_id=template.company_id,
                ),
            )
        case BillTemplate():
            due = posting_date + timedelta(days=template.due_in_days)
            return (
                GLEntryInput(
                    account_id=template.expense_account_id,
                    voucher_type=VoucherType.PURCHASE_INVOICE,
                    voucher_no=voucher_no,
                    posting_date=posting_date,
                    debit=template.amount,
                    cost_center=template.cost_center,
                    company_id=template.company_id,
                ),
                GLEntryInput(
                    account_id=template.payable_account_id,
                    voucher_type=VoucherType.PURCHASE_INVOICE,
                    voucher_no=voucher_no,
                    posting_date=posting_date,
                    credit=template.amount,
                    party_type=PartyType.SUPPLIER,
                    party=template.supplier,
                    due_date=due,
                    company_id=template.company_id,
                ),
            )
        case _:
            raise TypeError(f"Not a recurring template: {type(template).__name__}")
