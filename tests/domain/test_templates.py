"""
Tests for recurring transaction templates.

Covers:
- Parsing each tagged variant from a stored payload
- Unknown discriminants and missing fields
- Materializing a run into lines that pass PostingValidator
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.gl_entry import PartyType, VoucherType
from ledger_kernel.domain.posting_validator import PostingValidator
from ledger_kernel.domain.templates import (
    BillTemplate,
    InvoiceTemplate,
    JournalTemplate,
    TemplateLine,
    materialize,
    parse_template,
)
from ledger_kernel.exceptions import UnknownTemplateTypeError

RUN_DATE = date(2024, 5, 1)


class TestParseTemplate:
    def test_journal(self):
        template = parse_template(
            {
                "transaction_type": "Journal Entry",
                "remarks": "Monthly rent accrual",
                "lines": [
                    {"account_id": "RENT", "debit": "1200.00"},
                    {"account_id": "ACCRUED", "credit": "1200.00"},
                ],
            }
        )

        assert isinstance(template, JournalTemplate)
        assert template.lines[0].debit == Decimal("1200.00")
        assert template.lines[1].credit == Decimal("1200.00")

    def test_invoice(self):
        template = parse_template(
            {
                "transaction_type": "Sales Invoice",
                "customer": "CUST-1",
                "receivable_account_id": "AR",
                "income_account_id": "SUBSCRIPTIONS",
                "amount": "99.00",
                "due_in_days": 14,
            }
        )

        assert isinstance(template, InvoiceTemplate)
        assert template.amount == Decimal("99.00")
        assert template.due_in_days == 14

    def test_bill_defaults_due_in_days(self):
        template = parse_template(
            {
                "transaction_type": "Purchase Invoice",
                "supplier": "SUPP-1",
                "payable_account_id": "AP",
                "expense_account_id": "HOSTING",
                "amount": 250,
            }
        )

        assert isinstance(template, BillTemplate)
        assert template.due_in_days == 30

    def test_unknown_type_rejected(self):
        with pytest.raises(UnknownTemplateTypeError) as exc:
            parse_template({"transaction_type": "Timesheet"})

        assert exc.value.transaction_type == "Timesheet"
        assert exc.value.code == "UNKNOWN_TEMPLATE_TYPE"

    def test_missing_type_rejected(self):
        with pytest.raises(UnknownTemplateTypeError):
            parse_template({"lines": []})

    def test_unsupported_voucher_type_rejected(self):
        with pytest.raises(UnknownTemplateTypeError):
            parse_template({"transaction_type": "Payment Entry"})

    def test_missing_field_is_value_error(self):
        with pytest.raises(ValueError, match="customer"):
            parse_template(
                {
                    "transaction_type": "Sales Invoice",
                    "receivable_account_id": "AR",
                    "income_account_id": "SALES",
                    "amount": "1",
                }
            )

    def test_empty_journal_rejected(self):
        with pytest.raises(ValueError):
            parse_template({"transaction_type": "Journal Entry", "lines": []})

    def test_bad_amount_rejected(self):
        with pytest.raises(ValueError):
            parse_template(
                {
                    "transaction_type": "Purchase Invoice",
                    "supplier": "SUPP-1",
                    "payable_account_id": "AP",
                    "expense_account_id": "HOSTING",
                    "amount": "lots",
                }
            )


class TestMaterialize:
    def setup_method(self):
        self.validator = PostingValidator("USD")

    def test_journal_run_validates(self):
        template = JournalTemplate(
            lines=(
                TemplateLine("RENT", debit=Decimal("1200")),
                TemplateLine("ACCRUED", credit=Decimal("1200")),
            ),
            remarks="Rent",
        )
        lines = materialize(template, RUN_DATE, "JV-2024-05")

        posting = self.validator.validate_posting(lines).unwrap()
        assert posting.voucher_type is VoucherType.JOURNAL_ENTRY
        assert all(line.remarks == "Rent" for line in posting.lines)

    def test_invoice_run(self):
        template = InvoiceTemplate(
            customer="CUST-1",
            receivable_account_id="AR",
            income_account_id="SUBSCRIPTIONS",
            amount=Decimal("99.00"),
            due_in_days=14,
        )
        receivable, income = materialize(template, RUN_DATE, "SINV-2024-05")

        assert receivable.debit == Decimal("99.00")
        assert receivable.party_type is PartyType.CUSTOMER
        assert receivable.due_date == date(2024, 5, 15)
        assert income.credit == Decimal("99.00")
        assert self.validator.validate_posting([receivable, income]).is_valid

    def test_bill_run(self):
        template = BillTemplate(
            supplier="SUPP-1",
            payable_account_id="AP",
            expense_account_id="HOSTING",
            amount=Decimal("250"),
        )
        expense, payable = materialize(template, RUN_DATE, "PINV-2024-05")

        assert expense.debit == Decimal("250")
        assert payable.credit == Decimal("250")
        assert payable.party == "SUPP-1"
        assert payable.due_date == date(2024, 5, 31)

    def test_non_template_rejected(self):
        with pytest.raises(TypeError):
            materialize(object(), RUN_DATE, "X")
