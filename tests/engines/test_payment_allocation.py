"""
Tests for PaymentAllocationEngine.

Covers:
- Automatic FIFO allocation and partial settlement
- Manual allocation: clamping, repeated targets, unknown targets
- Overpayment posted as an advance
- Foreign-currency payments and the rounding line
- Bank charges and withholding tax on both directions
- Pre-check rejections and validation modes
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engines.outstanding import DocumentStatus
from ledger_engines.payment_allocation import (
    AllocationMode,
    DeductionKind,
    ManualAllocation,
    PaymentAllocationEngine,
    PaymentDeduction,
    PaymentDirection,
)
from ledger_kernel.domain.gl_entry import LineSide, PartyType, VoucherType
from ledger_kernel.domain.results import ValidationMode
from ledger_kernel.exceptions import (
    CurrencyMismatchError,
    DeductionsExceedPaymentError,
    MissingExchangeRateError,
    NonPositiveAmountError,
    TargetNotFoundError,
    UnbalancedPostingError,
)
from tests.factories import TODAY, bill, invoice, payment

EARLY = date(2024, 2, 1)
SOON = date(2024, 3, 10)
LATE = date(2024, 3, 20)


class TestAutomaticAllocation:
    def setup_method(self):
        self.engine = PaymentAllocationEngine("USD")

    def test_exact_payment_settles_invoice(self):
        result = self.engine.allocate(
            payment("100.00"), [invoice("SINV-A", "100.00", SOON)], as_of=TODAY
        )

        outcome = result.unwrap()
        (entry,) = outcome.entries
        assert entry.invoice_id == "SINV-A"
        assert entry.allocated_amount == Decimal("100.00")
        assert entry.outstanding_after == Decimal("0.00")
        assert entry.closes_document
        assert outcome.unallocated_amount == Decimal("0.00")
        assert outcome.mode is AllocationMode.AUTOMATIC

        bank, receivable = outcome.posting.lines
        assert (bank.account_id, bank.debit) == ("BANK", Decimal("100.00"))
        assert (receivable.account_id, receivable.credit) == ("AR", Decimal("100.00"))
        assert receivable.against_voucher == "SINV-A"
        assert receivable.against_voucher_type is VoucherType.SALES_INVOICE
        assert receivable.party_type is PartyType.CUSTOMER
        assert outcome.posting.total_debit == outcome.posting.total_credit

    def test_oldest_due_first(self):
        targets = [invoice("SINV-B", "80.00", LATE), invoice("SINV-A", "100.00", EARLY)]
        outcome = self.engine.allocate(payment("150.00"), targets, as_of=TODAY).unwrap()

        assert [(e.invoice_id, e.allocated_amount) for e in outcome.entries] == [
            ("SINV-A", Decimal("100.00")),
            ("SINV-B", Decimal("50.00")),
        ]
        assert outcome.entries[1].outstanding_after == Decimal("30.00")
        assert outcome.unallocated_amount == Decimal("0.00")
        assert outcome.is_fully_allocated

    def test_same_due_date_breaks_tie_by_id(self):
        targets = [invoice("SINV-2", "10", SOON), invoice("SINV-1", "10", SOON)]
        outcome = self.engine.allocate(payment("15"), targets, as_of=TODAY).unwrap()

        assert [e.invoice_id for e in outcome.entries] == ["SINV-1", "SINV-2"]

    def test_partial_payment_is_partly_paid(self):
        outcome = self.engine.allocate(
            payment("50.00"), [invoice("SINV-A", "100.00", LATE)], as_of=TODAY
        ).unwrap()

        entry = outcome.entries[0]
        assert entry.allocated_amount == Decimal("50.00")
        assert entry.outstanding_after == Decimal("50.00")
        assert outcome.status_updates["SINV-A"] is DocumentStatus.PARTLY_PAID

    def test_partial_payment_on_overdue_invoice_stays_overdue(self):
        outcome = self.engine.allocate(
            payment("50.00"), [invoice("SINV-A", "100.00", EARLY)], as_of=TODAY
        ).unwrap()

        assert outcome.status_updates["SINV-A"] is DocumentStatus.OVERDUE

    def test_settled_invoice_is_paid(self):
        outcome = self.engine.allocate(
            payment("100.00"), [invoice("SINV-A", "100.00", EARLY)], as_of=TODAY
        ).unwrap()

        assert outcome.status_updates["SINV-A"] is DocumentStatus.PAID

    def test_closed_and_other_kind_targets_ignored(self):
        targets = [
            invoice("SINV-A", "0", EARLY, grand_total="100"),
            bill("PINV-A", "40", EARLY, counterparty_id="CUST-1"),
            invoice("SINV-B", "30", LATE),
        ]
        outcome = self.engine.allocate(payment("30"), targets, as_of=TODAY).unwrap()

        assert [e.invoice_id for e in outcome.entries] == ["SINV-B"]

    def test_snapshot_version_carried(self):
        outcome = self.engine.allocate(
            payment("10"), [invoice("SINV-A", "10", SOON, version=7)], as_of=TODAY
        ).unwrap()

        assert outcome.entries[0].snapshot_version == 7

    def test_targets_not_mutated(self):
        target = invoice("SINV-A", "100.00", SOON)
        self.engine.allocate(payment("60.00"), [target], as_of=TODAY)

        assert target.outstanding_amount == Decimal("100.00")


class TestOverpayment:
    def setup_method(self):
        self.engine = PaymentAllocationEngine("USD")

    def test_excess_becomes_advance_on_party_account(self):
        outcome = self.engine.allocate(
            payment("130.00"), [invoice("SINV-A", "100.00", SOON)], as_of=TODAY
        ).unwrap()

        assert outcome.unallocated_amount == Decimal("30.00")
        advance = outcome.posting.lines[-1]
        assert advance.is_advance
        assert advance.account_id == "AR"
        assert advance.credit == Decimal("30.00")
        assert advance.against_voucher is None
        assert advance.party == "CUST-1"

    def test_advance_account_used_when_given(self):
        outcome = self.engine.allocate(
            payment("130.00", advance_account_id="CUST-ADV"),
            [invoice("SINV-A", "100.00", SOON)],
            as_of=TODAY,
        ).unwrap()

        assert outcome.posting.lines[-1].account_id == "CUST-ADV"

    def test_no_targets_whole_payment_is_advance(self):
        outcome = self.engine.allocate(payment("75.00"), [], as_of=TODAY).unwrap()

        assert outcome.entries == ()
        assert outcome.unallocated_amount == Decimal("75.00")
        assert outcome.posting.line_count == 2


class TestManualAllocation:
    def setup_method(self):
        self.engine = PaymentAllocationEngine("USD")

    def test_caller_order_kept(self):
        targets = [invoice("SINV-A", "100", EARLY), invoice("SINV-B", "100", LATE)]
        request = payment(
            "100",
            allocations=(ManualAllocation("SINV-B", Decimal("70")),
                         ManualAllocation("SINV-A", Decimal("30"))),
        )
        outcome = self.engine.allocate(request, targets, as_of=TODAY).unwrap()

        assert outcome.mode is AllocationMode.MANUAL
        assert [(e.invoice_id, e.allocated_amount) for e in outcome.entries] == [
            ("SINV-B", Decimal("70")),
            ("SINV-A", Decimal("30")),
        ]

    def test_request_above_outstanding_is_clamped(self):
        request = payment("200", allocations=(ManualAllocation("SINV-A", Decimal("150")),))
        outcome = self.engine.allocate(
            request, [invoice("SINV-A", "100", SOON)], as_of=TODAY
        ).unwrap()

        assert outcome.entries[0].allocated_amount == Decimal("100")
        assert outcome.unallocated_amount == Decimal("100")

    def test_request_above_remaining_is_clamped(self):
        request = payment(
            "50",
            allocations=(ManualAllocation("SINV-A", Decimal("40")),
                         ManualAllocation("SINV-B", Decimal("40"))),
        )
        targets = [invoice("SINV-A", "100", SOON), invoice("SINV-B", "100", SOON)]
        outcome = self.engine.allocate(request, targets, as_of=TODAY).unwrap()

        assert [e.allocated_amount for e in outcome.entries] == [Decimal("40"), Decimal("10")]

    def test_repeated_target_cannot_overallocate(self):
        request = payment(
            "120",
            allocations=(ManualAllocation("SINV-A", Decimal("60")),
                         ManualAllocation("SINV-A", Decimal("60"))),
        )
        outcome = self.engine.allocate(
            request, [invoice("SINV-A", "100", SOON)], as_of=TODAY
        ).unwrap()

        assert [e.allocated_amount for e in outcome.entries] == [Decimal("60"), Decimal("40")]
        assert outcome.entries[1].outstanding_before == Decimal("40")
        assert outcome.unallocated_amount == Decimal("20")
        assert outcome.status_updates["SINV-A"] is DocumentStatus.PAID

    def test_unknown_target_is_warning(self, captured_logs):
        request = payment("100", allocations=(ManualAllocation("SINV-X", Decimal("100")),))
        outcome = self.engine.allocate(
            request, [invoice("SINV-A", "100", SOON)], as_of=TODAY
        ).unwrap()

        assert outcome.entries == ()
        assert outcome.unallocated_amount == Decimal("100")
        (warning,) = outcome.warnings
        assert isinstance(warning, TargetNotFoundError)
        assert warning.target_id == "SINV-X"
        assert any(r["message"] == "allocation_target_not_found" for r in captured_logs())

    def test_non_positive_allocation_rejected(self):
        request = payment("100", allocations=(ManualAllocation("SINV-A", Decimal("0")),))
        result = self.engine.allocate(request, [invoice("SINV-A", "100", SOON)], as_of=TODAY)

        assert isinstance(result.first_error, NonPositiveAmountError)
        assert result.first_error.field == "allocations[0].amount"


class TestForeignCurrency:
    def test_bank_line_converted_to_base(self):
        engine = PaymentAllocationEngine("MYR")
        request = payment("100.00", currency="USD", exchange_rate=Decimal("4.50"))
        outcome = engine.allocate(
            request, [invoice("SINV-A", "100.00", SOON, currency="USD")], as_of=TODAY
        ).unwrap()

        bank = outcome.posting.lines[0]
        assert bank.debit_in_account_currency == Decimal("450.00")
        assert bank.account_currency == "MYR"
        assert bank.transaction_currency == "USD"
        assert bank.debit_in_transaction_currency == Decimal("100.00")
        assert bank.transaction_exchange_rate == Decimal("4.50")

    def test_missing_rate_rejected(self):
        engine = PaymentAllocationEngine("MYR")
        result = engine.allocate(
            payment("100.00", currency="USD"),
            [invoice("SINV-A", "100.00", SOON, currency="USD")],
            as_of=TODAY,
        )

        assert not result
        with pytest.raises(MissingExchangeRateError):
            result.unwrap()

    def test_non_positive_rate_rejected(self):
        engine = PaymentAllocationEngine("MYR")
        result = engine.allocate(
            payment("100.00", currency="USD", exchange_rate=Decimal("-1")), [], as_of=TODAY
        )

        assert result.error_codes == ("MISSING_EXCHANGE_RATE",)

    def test_conversion_residue_goes_to_rounding_line(self):
        engine = PaymentAllocationEngine("USD")
        targets = [
            invoice("SINV-1", "33.33", SOON, currency="EUR"),
            invoice("SINV-2", "33.33", SOON, currency="EUR"),
            invoice("SINV-3", "33.34", SOON, currency="EUR"),
        ]
        request = payment(
            "100.00",
            currency="EUR",
            exchange_rate=Decimal("1.0833"),
            round_off_account_id="ROUND-OFF",
        )
        posting = engine.allocate(request, targets, as_of=TODAY).unwrap().posting

        rounding = [line for line in posting.lines if line.is_rounding]
        assert len(rounding) == 1
        assert rounding[0].account_id == "ROUND-OFF"
        assert rounding[0].debit == Decimal("0.01")
        assert posting.total_debit == posting.total_credit == Decimal("108.34")

    def test_residue_without_round_off_account_rejected(self):
        engine = PaymentAllocationEngine("USD")
        targets = [
            invoice("SINV-1", "33.33", SOON, currency="EUR"),
            invoice("SINV-2", "33.33", SOON, currency="EUR"),
            invoice("SINV-3", "33.34", SOON, currency="EUR"),
        ]
        request = payment("100.00", currency="EUR", exchange_rate=Decimal("1.0833"))
        result = engine.allocate(request, targets, as_of=TODAY)

        assert isinstance(result.first_error, UnbalancedPostingError)

    def test_zero_decimal_base_rounds_to_whole_units(self):
        engine = PaymentAllocationEngine("JPY")
        request = payment(
            "100.01", currency="USD", exchange_rate=Decimal("150"), round_off_account_id="ROUND-OFF"
        )
        result = engine.allocate(
            request, [invoice("SINV-A", "100.01", SOON, currency="USD")], as_of=TODAY
        )

        assert result.is_valid
        posting = result.unwrap().posting
        assert posting.lines[0].debit == Decimal("15002")
        assert posting.lines[1].credit == Decimal("15002")
        assert not any(line.is_rounding for line in posting.lines)

    def test_zero_decimal_base_residue_goes_to_rounding_line(self):
        engine = PaymentAllocationEngine("JPY")
        targets = [
            invoice("SINV-1", "1.00", SOON, currency="USD"),
            invoice("SINV-2", "1.00", SOON, currency="USD"),
            invoice("SINV-3", "1.00", SOON, currency="USD"),
        ]
        request = payment(
            "3.00", currency="USD", exchange_rate=Decimal("150.3"), round_off_account_id="ROUND-OFF"
        )
        result = engine.allocate(request, targets, as_of=TODAY)

        assert result.is_valid
        posting = result.unwrap().posting
        rounding = [line for line in posting.lines if line.is_rounding]
        assert len(rounding) == 1
        assert rounding[0].credit == Decimal("1")
        assert posting.total_debit == posting.total_credit == Decimal("451")

    def test_target_in_other_currency_rejected(self):
        engine = PaymentAllocationEngine("USD")
        result = engine.allocate(
            payment("10"), [invoice("SINV-A", "10", SOON, currency="EUR")], as_of=TODAY
        )

        error = result.first_error
        assert isinstance(error, CurrencyMismatchError)
        assert (error.target_id, error.expected, error.actual) == ("SINV-A", "USD", "EUR")


class TestDeductions:
    def test_receive_bank_charge_reduces_bank_line(self):
        engine = PaymentAllocationEngine("USD")
        request = payment(
            "100.00",
            deductions=(PaymentDeduction("BANK-FEES", Decimal("2.00")),),
        )
        posting = engine.allocate(
            request, [invoice("SINV-A", "100.00", SOON)], as_of=TODAY
        ).unwrap().posting

        bank, fee, receivable = posting.lines
        assert bank.debit == Decimal("98.00")
        assert (fee.account_id, fee.debit) == ("BANK-FEES", Decimal("2.00"))
        assert receivable.credit == Decimal("100.00")

    def test_pay_withholding_and_bank_charge(self):
        engine = PaymentAllocationEngine("USD")
        request = payment(
            "100.00",
            direction=PaymentDirection.PAY,
            deductions=(
                PaymentDeduction("WHT-PAYABLE", Decimal("10.00"), DeductionKind.WITHHOLDING_TAX),
                PaymentDeduction("BANK-FEES", Decimal("1.00"), DeductionKind.BANK_CHARGE),
            ),
        )
        outcome = engine.allocate(request, [bill("PINV-A", "100.00", SOON)], as_of=TODAY).unwrap()

        bank, wht, fee, payable = outcome.posting.lines
        assert bank.side is LineSide.CREDIT and bank.credit == Decimal("91.00")
        assert wht.side is LineSide.CREDIT and wht.credit == Decimal("10.00")
        assert fee.side is LineSide.DEBIT and fee.debit == Decimal("1.00")
        assert payable.debit == Decimal("100.00")
        assert payable.party_type is PartyType.SUPPLIER
        assert payable.against_voucher_type is VoucherType.PURCHASE_INVOICE
        assert outcome.posting.total == Decimal("101.00")

    def test_deductions_consuming_payment_rejected(self):
        engine = PaymentAllocationEngine("USD")
        request = payment(
            "50.00", deductions=(PaymentDeduction("BANK-FEES", Decimal("50.00")),)
        )
        result = engine.allocate(request, [], as_of=TODAY)

        assert isinstance(result.first_error, DeductionsExceedPaymentError)

    def test_non_positive_deduction_rejected(self):
        engine = PaymentAllocationEngine("USD")
        request = payment("50.00", deductions=(PaymentDeduction("FEES", Decimal("0")),))
        result = engine.allocate(request, [], as_of=TODAY)

        assert result.first_error.field == "deductions[0].amount"


class TestPrecheckModes:
    def test_non_positive_amount_rejected(self):
        result = PaymentAllocationEngine("USD").allocate(payment("0"), [], as_of=TODAY)

        assert isinstance(result.first_error, NonPositiveAmountError)
        assert result.outcome is None

    def test_fail_fast_keeps_first_error(self):
        engine = PaymentAllocationEngine("MYR")
        result = engine.allocate(
            payment("-5", currency="USD"),
            [invoice("SINV-A", "10", SOON, currency="EUR")],
            as_of=TODAY,
        )

        assert result.error_codes == ("NON_POSITIVE_AMOUNT",)

    def test_exhaustive_collects_all(self):
        engine = PaymentAllocationEngine("MYR", validation_mode=ValidationMode.EXHAUSTIVE)
        result = engine.allocate(
            payment("-5", currency="USD"),
            [invoice("SINV-A", "10", SOON, currency="EUR")],
            as_of=TODAY,
        )

        assert result.error_codes == (
            "NON_POSITIVE_AMOUNT",
            "MISSING_EXCHANGE_RATE",
            "CURRENCY_MISMATCH",
        )


class TestDeterminism:
    def test_same_inputs_same_outcome(self):
        engine = PaymentAllocationEngine("USD")
        targets = [invoice("SINV-B", "80.00", LATE), invoice("SINV-A", "100.00", EARLY)]

        first = engine.allocate(payment("150.00"), targets, as_of=TODAY).unwrap()
        second = engine.allocate(payment("150.00"), list(reversed(targets)), as_of=TODAY).unwrap()

        assert first == second

    def test_trace_fingerprint_stable(self, captured_logs):
        engine = PaymentAllocationEngine("USD")
        targets = [invoice("SINV-A", "100.00", EARLY)]
        engine.allocate(payment("10"), targets, as_of=TODAY)
        engine.allocate(payment("10"), targets, as_of=TODAY)

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "payment_allocation"
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
