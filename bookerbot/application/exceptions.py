from __future__ import annotations

from enum import StrEnum


class LLMUpstreamError(RuntimeError):
    """Raised when LLM provider fails (timeouts, network errors, service unavailable)."""
    pass


class LLMContractError(RuntimeError):
    """Raised when LLM adapter violates contract (bad format or missing data)."""
    pass


class StoreError(RuntimeError):
    """Raised when the contact store cannot read or write."""
    pass


class StaleContextError(StoreError):
    """Raised when the stored conversation record changed since it was read."""
    pass


class ErrorKind(StrEnum):
    CONTACT_NOT_FOUND = "contact_not_found"
    CONTACT_OPTED_OUT = "contact_opted_out"
    CONTACT_HANDED_OFF = "contact_handed_off"
    WORKFLOW_INACTIVE = "workflow_inactive"
    AI_GENERATION_FAILED = "ai_generation_failed"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


NON_RECOVERABLE_KINDS = frozenset(
    {
        ErrorKind.CONTACT_NOT_FOUND,
        ErrorKind.CONTACT_OPTED_OUT,
        ErrorKind.CONTACT_HANDED_OFF,
        ErrorKind.WORKFLOW_INACTIVE,
    }
)


class OrchestrationError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, contact_id: str | None = None) -> None:
        super().__init__(message)
        self.contact_id = contact_id


class ContactNotFoundError(OrchestrationError):
    kind = ErrorKind.CONTACT_NOT_FOUND


class ContactOptedOutError(OrchestrationError):
    kind = ErrorKind.CONTACT_OPTED_OUT


class ContactHandedOffError(OrchestrationError):
    kind = ErrorKind.CONTACT_HANDED_OFF


class WorkflowInactiveError(OrchestrationError):
    kind = ErrorKind.WORKFLOW_INACTIVE


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, OrchestrationError):
        return exc.kind
    if isinstance(exc, (LLMUpstreamError, LLMContractError)):
        return ErrorKind.AI_GENERATION_FAILED
    if isinstance(exc, StoreError):
        return ErrorKind.DATABASE_ERROR
    return ErrorKind.UNKNOWN


def is_recoverable(kind: ErrorKind) -> bool:
    return kind not in NON_RECOVERABLE_KINDS
