"""
Tests for ledger settings loading.

Covers:
- Packaged defaults through get_active_config, with the config trace log
- parse_settings validation of required keys and malformed values
- Loading an override file and company default accounts
"""

from decimal import Decimal

import pytest
import yaml

from ledger_config import (
    AgingBucketDef,
    compute_checksum,
    get_active_config,
    load_settings,
    parse_settings,
)
from ledger_kernel.domain.results import ValidationMode


class TestPackagedDefaults:
    def test_defaults_load(self):
        settings = get_active_config()

        assert settings.base_currency == "USD"
        assert settings.reconciliation_epsilon == Decimal("0.005")
        assert settings.paid_tolerance == Decimal("0.01")
        assert settings.validation_mode is ValidationMode.FAIL_FAST
        assert settings.max_commit_retries == 3
        assert [b.name for b in settings.aging_buckets] == [
            "Not Due", "1-30", "31-60", "61-90", "90+",
        ]
        assert settings.aging_buckets[-1].max_days is None
        assert settings.companies == ()
        assert len(settings.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        settings = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert traces[0]["checksum"] == settings.checksum
        assert traces[0]["base_currency"] == "USD"
        assert traces[0]["validation_mode"] == "fail_fast"


class TestParseSettings:
    def test_base_currency_required(self):
        with pytest.raises(KeyError):
            parse_settings({"validation_mode": "fail_fast"})

    def test_currency_normalized(self):
        assert parse_settings({"base_currency": "myr"}).base_currency == "MYR"

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"base_currency": "ZZZ"})

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError, match="validation_mode"):
            parse_settings({"base_currency": "USD", "validation_mode": "lenient"})

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError, match="max_commit_retries"):
            parse_settings({"base_currency": "USD", "max_commit_retries": -1})

    def test_malformed_decimal_rejected(self):
        with pytest.raises(ValueError, match="paid_tolerance"):
            parse_settings({"base_currency": "USD", "paid_tolerance": "abc"})

    def test_inverted_bucket_rejected(self):
        with pytest.raises(ValueError, match="max_days"):
            parse_settings({
                "base_currency": "USD",
                "aging_buckets": [{"name": "Bad", "min_days": 10, "max_days": 5}],
            })

    def test_exhaustive_mode_and_buckets(self):
        settings = parse_settings({
            "base_currency": "USD",
            "validation_mode": "exhaustive",
            "aging_buckets": [{"name": "Current", "min_days": 0, "max_days": 0}],
        })
        assert settings.validation_mode is ValidationMode.EXHAUSTIVE
        assert settings.aging_buckets == (AgingBucketDef("Current", 0, 0),)

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestSettingsFile:
    def test_override_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({
            "version": 7,
            "base_currency": "EUR",
            "reconciliation_epsilon": "0.01",
            "companies": [
                {
                    "company_id": "ACME",
                    "round_off_account_id": "ROUND-OFF",
                    "customer_advance_account_id": "CUST-ADV",
                },
            ],
        }))

        settings = get_active_config(path)

        assert settings.version == 7
        assert settings.base_currency == "EUR"
        assert settings.reconciliation_epsilon == Decimal("0.01")
        accounts = settings.accounts_for("ACME")
        assert accounts.round_off_account_id == "ROUND-OFF"
        assert accounts.supplier_advance_account_id is None
        assert settings.accounts_for("OTHER") is None
        assert settings.accounts_for(None) is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_empty_file_lacks_base_currency(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(KeyError):
            load_settings(path)
