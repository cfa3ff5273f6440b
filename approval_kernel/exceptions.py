"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

An approval portal has two failure classes that callers must tell apart
without parsing messages:

  - "you may not do this" (the actor lacks the capability for the stage)
  - "this cannot be done now" (the document is in the wrong status)

Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA (document id, status, capability, ...)

Example:
    try:
        service.apply_transition(doc_id, TransitionOperation.APPROVE, actor)
    except PermissionDeniedError as e:
        api_response(code=e.code, capability=e.capability)
    except InvalidStateTransitionError as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- WorkflowError
    |   +-- PermissionDeniedError
    |   +-- InvalidStateTransitionError
    |   +-- UnknownStatusError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- UnsupportedDocumentKindError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- PersistenceError
        +-- PersistenceFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|--------------------------------------
Workflow     | PERMISSION_DENIED          | Actor lacks the stage capability
             | INVALID_STATE_TRANSITION   | Operation illegal in current status
             | UNKNOWN_STATUS             | Status not in the kind's status set
-------------|----------------------------|--------------------------------------
Document     | DOCUMENT_NOT_FOUND         | Document id doesn't exist
             | UNSUPPORTED_DOCUMENT_KIND  | No workflow registered for the kind
-------------|----------------------------|--------------------------------------
Concurrency  | CONCURRENT_MODIFICATION    | Conditional update matched zero rows
-------------|----------------------------|--------------------------------------
Persistence  | PERSISTENCE_FAILURE        | Store unreachable; nothing applied
"""


class ApprovalKernelError(Exception):
    """Base exception for all approval kernel errors."""

    code: str = "APPROVAL_KERNEL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)


# =============================================================================
# Workflow errors
# =============================================================================


class WorkflowError(ApprovalKernelError):
    """Base exception for state machine errors."""

    code: str = "WORKFLOW_ERROR"


class PermissionDeniedError(WorkflowError):
    """Actor does not hold the capability required for the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(
        self,
        document_id: str,
        actor: str,
        operation: str,
        capability: str | None = None,
    ):
        self.document_id = document_id
        self.actor = actor
        self.operation = operation
        self.capability = capability
        needed = f" (requires {capability})" if capability else ""
        super().__init__(
            f"{actor} may not {operation} document {document_id}{needed}"
        )


class InvalidStateTransitionError(WorkflowError):
    """Operation is not legal from the document's current status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, document_id: str, current_status: str, operation: str):
        self.document_id = document_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} document {document_id} in status '{current_status}'"
        )


class UnknownStatusError(WorkflowError):
    """Status value is not part of the document kind's workflow."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, kind: str, status: str):
        self.kind = kind
        self.status = status
        super().__init__(f"Status '{status}' is not defined for {kind}")


# =============================================================================
# Document errors
# =============================================================================


class DocumentError(ApprovalKernelError):
    """Base exception for document lookup errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document id does not exist in the store."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class UnsupportedDocumentKindError(DocumentError):
    """No workflow is registered for the document kind."""

    code: str = "UNSUPPORTED_DOCUMENT_KIND"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No workflow registered for document kind '{kind}'")


# =============================================================================
# Concurrency errors
# =============================================================================


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Document changed between read and conditional write.

    Raised when the stored version/status no longer matches the snapshot the
    transition was computed from. The caller should re-read and retry.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        document_id: str,
        expected_version: int,
        expected_status: str,
    ):
        self.document_id = document_id
        self.expected_version = expected_version
        self.expected_status = expected_status
        super().__init__(
            f"Document {document_id} was modified concurrently "
            f"(expected version {expected_version}, status '{expected_status}')"
        )


# =============================================================================
# Persistence errors
# =============================================================================


class PersistenceError(ApprovalKernelError):
    """Base exception for storage errors."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceFailureError(PersistenceError):
    """The store could not be reached; the transition was not applied."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")
