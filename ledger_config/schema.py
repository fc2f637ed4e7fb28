"""
LedgerSettings schema.

The typed form of the ledger's YAML configuration. The loader parses YAML
into these frozen dataclasses; services read them and pass plain values
into kernel and engine constructors.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ledger_kernel.domain.results import ValidationMode


@dataclass(frozen=True)
class AgingBucketDef:
    """One aging bucket: days past due from min_days to max_days (None = open)."""

    name: str
    min_days: int
    max_days: int | None = None


@dataclass(frozen=True)
class CompanyAccounts:
    """Default accounts a company's payments post to when the request names none."""

    company_id: str
    round_off_account_id: str | None = None
    customer_advance_account_id: str | None = None
    supplier_advance_account_id: str | None = None


@dataclass(frozen=True)
class LedgerSettings:
    """Runtime settings for posting validation and payment allocation."""

    base_currency: str
    reconciliation_epsilon: Decimal = Decimal("0.005")
    paid_tolerance: Decimal = Decimal("0.01")
    validation_mode: ValidationMode = ValidationMode.FAIL_FAST
    max_commit_retries: int = 3
    aging_buckets: tuple[AgingBucketDef, ...] = ()
    companies: tuple[CompanyAccounts, ...] = ()
    version: int = 1
    checksum: str = ""

    def accounts_for(self, company_id: str | None) -> CompanyAccounts | None:
        if company_id is None:
            return None
        for accounts in self.companies:
            if accounts.company_id == company_id:
                return accounts
        return None
