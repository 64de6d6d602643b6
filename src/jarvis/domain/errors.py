"""Error taxonomy for the message pipeline and the escalation workflow.

Every user-facing code has a fixed bilingual message in
jarvis.domain.templating.SYSTEM_MESSAGES.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Coarse taxonomy used for logging and metrics."""

    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    SERVICE_ERROR = "SERVICE_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"


class ErrorCode(str, Enum):
    """Codes persisted on message outcomes."""

    SPAM_DETECTED = "SPAM_DETECTED"
    INVALID_FORMAT = "INVALID_FORMAT"
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    CRM_TIMEOUT = "CRM_TIMEOUT"
    CRM_AUTH_FAILED = "CRM_AUTH_FAILED"
    CRM_ERROR = "CRM_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class JarvisError(Exception):
    """Base class. Subclasses set code/category."""

    code: str = ErrorCode.SYSTEM_ERROR.value
    category: ErrorCategory = ErrorCategory.SERVICE_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# NLU (always absorbed into the fallback extractor)


class UpstreamTimeoutError(JarvisError):
    """The NLU endpoint did not answer within its budget."""

    code = "NLU_TIMEOUT"
    category = ErrorCategory.UPSTREAM_TIMEOUT


class UpstreamError(JarvisError):
    """Transport or HTTP failure talking to the NLU endpoint."""

    code = "NLU_ERROR"
    category = ErrorCategory.SERVICE_ERROR


class SchemaInvalidError(JarvisError):
    """Model output had no JSON object or failed schema validation."""

    code = "NLU_SCHEMA_INVALID"
    category = ErrorCategory.SCHEMA_INVALID


# Contract status lookups


class CrmLookupError(JarvisError):
    """Base for contract status resolver failures."""

    retryable: bool = True


class ContractNotFoundError(CrmLookupError):
    """Definitive not-found. Never retried, never cached."""

    code = ErrorCode.CONTRACT_NOT_FOUND.value
    category = ErrorCategory.NOT_FOUND
    retryable = False


class CrmTimeoutError(CrmLookupError):
    code = ErrorCode.CRM_TIMEOUT.value
    category = ErrorCategory.UPSTREAM_TIMEOUT


class CrmAuthError(CrmLookupError):
    code = ErrorCode.CRM_AUTH_FAILED.value
    category = ErrorCategory.SERVICE_ERROR


class CrmError(CrmLookupError):
    code = ErrorCode.CRM_ERROR.value
    category = ErrorCategory.SERVICE_ERROR


class CrmNotConfiguredError(CrmError):
    """No CRM endpoint configured. Retrying cannot help."""

    retryable = False


# Complaints / tickets


class ComplaintTransitionError(JarvisError):
    """Status change not allowed by the complaint state machine."""

    code = "INVALID_TRANSITION"
    category = ErrorCategory.VALIDATION


class ComplaintNotFoundError(JarvisError):
    code = "COMPLAINT_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND


class TicketProviderError(JarvisError):
    """Ticketing provider unreachable or rejected the request."""

    code = "PROVIDER_UNAVAILABLE"
    category = ErrorCategory.PROVIDER_UNAVAILABLE
