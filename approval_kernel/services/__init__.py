"""Services for the approval kernel (write side)."""

from approval_kernel.services.document_service import DocumentService
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.settings_service import SettingsService

__all__ = [
    "DocumentService",
    "SequenceService",
    "SettingsService",
]
