"""
Results -- validation outcomes returned as values.

Validation never raises for bad input. Validators return one of these
objects and the caller decides: inspect ``errors`` to render field-level
messages, or call ``unwrap()`` to get the payload or raise the first error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ledger_kernel.domain.gl_entry import Posting
from ledger_kernel.exceptions import LedgerKernelError


class ValidationMode(str, Enum):
    """How many errors a validator reports before stopping."""

    FAIL_FAST = "fail_fast"
    EXHAUSTIVE = "exhaustive"


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of validating a single GL line.

    Guarantees:
        - errors is always a tuple (never None)
        - bool(result) == result.is_valid
    """

    is_valid: bool
    errors: tuple[LedgerKernelError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: LedgerKernelError) -> ValidationResult:
        return cls(is_valid=False, errors=tuple(errors))

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass(frozen=True)
class PostingResult:
    """
    Result of PostingValidator.validate_posting().

    Contract:
        Either carries a balanced Posting OR at least one error, never both.
    """

    posting: Posting | None
    errors: tuple[LedgerKernelError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls, posting: Posting) -> PostingResult:
        return cls(posting=posting, errors=())

    @classmethod
    def failure(cls, *errors: LedgerKernelError) -> PostingResult:
        assert errors, "a failed PostingResult needs at least one error"
        return cls(posting=None, errors=tuple(errors))

    @property
    def is_valid(self) -> bool:
        return self.posting is not None and not self.errors

    @property
    def first_error(self) -> LedgerKernelError | None:
        return self.errors[0] if self.errors else None

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    def unwrap(self) -> Posting:
        """Return the posting, or raise the first validation error."""
        if self.errors:
            raise self.errors[0]
        assert self.posting is not None
        return self.posting

    def __bool__(self) -> bool:
        return self.is_valid
