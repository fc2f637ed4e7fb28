"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the ledger's YAML settings file and parses it into the frozen
``ledger_config.schema`` dataclasses.  Runtime callers go through
``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* No silent defaults for required keys: ``base_currency`` must be present.
* Amounts are parsed from strings into Decimal, never through float.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Malformed values (currency, decimal, mode, bucket range)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import AgingBucketDef, CompanyAccounts, LedgerSettings
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.results import ValidationMode


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, label: str) -> Decimal:
    """Parse a Decimal from a YAML string or int (floats go through str)."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid decimal for {label}: {value!r}") from e


def parse_aging_bucket(data: dict[str, Any]) -> AgingBucketDef:
    bucket = AgingBucketDef(
        name=data["name"],
        min_days=int(data["min_days"]),
        max_days=int(data["max_days"]) if data.get("max_days") is not None else None,
    )
    if bucket.min_days < 0:
        raise ValueError(f"Aging bucket {bucket.name!r}: min_days cannot be negative")
    if bucket.max_days is not None and bucket.max_days < bucket.min_days:
        raise ValueError(f"Aging bucket {bucket.name!r}: max_days < min_days")
    return bucket


def parse_company_accounts(data: dict[str, Any]) -> CompanyAccounts:
    return CompanyAccounts(
        company_id=str(data["company_id"]),
        round_off_account_id=data.get("round_off_account_id"),
        customer_advance_account_id=data.get("customer_advance_account_id"),
        supplier_advance_account_id=data.get("supplier_advance_account_id"),
    )


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """
    Parse ``LedgerSettings`` from a dict.

    Raises:
        KeyError: if ``base_currency`` is missing.
        ValueError: if any value is malformed.
    """
    try:
        mode = ValidationMode(data.get("validation_mode", ValidationMode.FAIL_FAST.value))
    except ValueError as e:
        raise ValueError(f"Unknown validation_mode: {data.get('validation_mode')!r}") from e

    retries = int(data.get("max_commit_retries", 3))
    if retries < 0:
        raise ValueError(f"max_commit_retries cannot be negative: {retries}")

    epsilon = parse_decimal(data.get("reconciliation_epsilon", "0.005"), "reconciliation_epsilon")
    tolerance = parse_decimal(data.get("paid_tolerance", "0.01"), "paid_tolerance")
    if epsilon < 0 or tolerance < 0:
        raise ValueError("reconciliation_epsilon and paid_tolerance must be non-negative")

    return LedgerSettings(
        base_currency=CurrencyRegistry.validate(data["base_currency"]),
        reconciliation_epsilon=epsilon,
        paid_tolerance=tolerance,
        validation_mode=mode,
        max_commit_retries=retries,
        aging_buckets=tuple(parse_aging_bucket(b) for b in data.get("aging_buckets", ())),
        companies=tuple(parse_company_accounts(c) for c in data.get("companies", ())),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> LedgerSettings:
    """Load and parse a settings file."""
    return parse_settings(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
