"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings.  No
    other component reads configuration files or environment variables.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and ``ledger_engines``
    and below ``ledger_services``.  The kernel and engines MUST NEVER import
    from ``ledger_config``; services pass settings values into their
    constructors.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the settings version and the
    SHA-256 checksum of the loaded document, tying each posting back to
    the configuration that validated it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import compute_checksum, load_settings, parse_settings
from ledger_config.schema import AgingBucketDef, CompanyAccounts, LedgerSettings

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | None = None) -> LedgerSettings:
    """The ONLY public configuration entrypoint.

    Args:
        path: Settings file to load.  Defaults to the packaged
            ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is malformed.
    """
    settings = load_settings(path or _DEFAULT_CONFIG_PATH)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_path": str(path or _DEFAULT_CONFIG_PATH),
            "config_version": settings.version,
            "checksum": settings.checksum,
            "base_currency": settings.base_currency,
            "validation_mode": settings.validation_mode.value,
            "company_count": len(settings.companies),
        },
    )
    return settings


__all__ = [
    "AgingBucketDef",
    "CompanyAccounts",
    "LedgerSettings",
    "compute_checksum",
    "get_active_config",
    "load_settings",
    "parse_settings",
]
