"""
Reversal -- cancel a posting by posting its mirror image.

Submitted GL lines are never edited or deleted. Cancelling a voucher adds
a second posting with every line's debit and credit swapped (in all three
currency tiers), flagged ``is_cancelled`` with docstatus CANCELLED. The two
postings net to zero per account, and against_voucher linkage is kept so
outstanding balances can be restored from the same lines.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

from ledger_kernel.domain.currency import RECONCILIATION_EPSILON
from ledger_kernel.domain.gl_entry import DocStatus, GLEntryInput, Posting
from ledger_kernel.domain.posting_validator import PostingValidator
from ledger_kernel.domain.results import PostingResult
from ledger_kernel.exceptions import AlreadyCancelledError
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.reversal")


def reverse_line(line: GLEntryInput, posting_date: date) -> GLEntryInput:
    """Mirror a single line onto ``posting_date``."""
    due_date = line.due_date
    if due_date is not None and due_date < posting_date:
        due_date = None
    return replace(
        line,
        debit=line.credit,
        credit=line.debit,
        debit_in_account_currency=line.credit_in_account_currency,
        credit_in_account_currency=line.debit_in_account_currency,
        debit_in_transaction_currency=line.credit_in_transaction_currency,
        credit_in_transaction_currency=line.debit_in_transaction_currency,
        posting_date=posting_date,
        due_date=due_date,
        remarks=f"Reversal of {line.voucher_no}",
        is_cancelled=True,
        docstatus=DocStatus.CANCELLED,
        id=None,
    )


def build_reversal(
    posting: Posting,
    *,
    reversal_date: date | None = None,
    epsilon: Decimal = RECONCILIATION_EPSILON,
) -> PostingResult:
    """
    Build and validate the reversing posting for ``posting``.

    The original posting is not touched. A posting whose lines are already
    cancelled cannot be reversed again. ``epsilon`` should be the tolerance
    the original was validated with.
    """
    if any(
        line.is_cancelled or line.docstatus is DocStatus.CANCELLED
        for line in posting.lines
    ):
        logger.warning(
            "reversal_rejected",
            extra={"voucher_no": posting.voucher_no, "reason": "already_cancelled"},
        )
        return PostingResult.failure(AlreadyCancelledError(posting.voucher_no))

    on = reversal_date or posting.posting_date
    lines = [reverse_line(line, on) for line in posting.lines]

    validator = PostingValidator(
        posting.base_currency, company_id=posting.company_id, epsilon=epsilon
    )
    result = validator.validate_posting(lines)
    if result.is_valid:
        logger.info(
            "reversal_built",
            extra={
                "voucher_no": posting.voucher_no,
                "reversal_date": on,
                "line_count": len(lines),
                "total": str(posting.total),
            },
        )
    return result
