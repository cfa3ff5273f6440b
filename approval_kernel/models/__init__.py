"""ORM models for the approval kernel."""

from approval_kernel.models.document import DocumentModel, DocumentTransitionModel
from approval_kernel.models.settings import RolePermissionOverrideModel
from approval_kernel.models.sequence import SequenceCounter

__all__ = [
    "DocumentModel",
    "DocumentTransitionModel",
    "RolePermissionOverrideModel",
    "SequenceCounter",
]
