"""ORM models for the ledger kernel."""

from ledger_kernel.models.gl_entry import GLEntryRow
from ledger_kernel.models.outstanding_document import OutstandingDocumentRow

__all__ = [
    "GLEntryRow",
    "OutstandingDocumentRow",
]
