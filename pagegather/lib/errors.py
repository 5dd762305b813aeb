"""Error taxonomy for the gathering pipeline.

Every error raised by pagegather derives from GatherError and carries an
``error_code`` plus a ``details`` dict, so callers can branch on the code
without parsing messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class GatherError(Exception):
    """Base error for configuration, protocol and navigation failures."""

    def __init__(
        self,
        message: str = "Gathering failed",
        error_code: str = "gather_failed",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(GatherError):
    """Raised when a declarative config is malformed or contradictory."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="invalid_config",
            details=details
        )


class InvalidExtensionError(ConfigurationError):
    """Raised when ``extends`` names anything other than the built-in default."""

    def __init__(self, extends: Any):
        super().__init__(
            "`pagegather:default` is the only valid extension method.",
            details={"extends": extends}
        )


class DependencyError(GatherError):
    """Raised when artifact dependencies are out of order or incompatible."""

    def __init__(
        self,
        message: str,
        artifact_id: str,
        dependency_name: Optional[str] = None,
        dependency_id: Optional[str] = None
    ):
        details = {"artifact_id": artifact_id}
        if dependency_name:
            details["dependency_name"] = dependency_name
        if dependency_id:
            details["dependency_id"] = dependency_id

        super().__init__(
            message=message,
            error_code="invalid_dependency",
            details=details
        )
        self.artifact_id = artifact_id
        self.dependency_name = dependency_name


class ProtocolTimeoutError(GatherError):
    """Raised when a protocol command did not answer in time.

    Retryable by the caller; the session itself stays usable.
    """

    retryable = True

    def __init__(self, protocol_method: str, timeout_ms: Optional[float] = None):
        super().__init__(
            message=f"Waiting for DevTools protocol response has exceeded the allotted time. "
                    f"(Method: {protocol_method})",
            error_code="PROTOCOL_TIMEOUT",
            details={"protocol_method": protocol_method, "timeout_ms": timeout_ms}
        )
        self.protocol_method = protocol_method


class NavigationErrorCode(str, Enum):
    """Typed page-load failure kinds."""
    NO_FCP = "NO_FCP"
    PAGE_HUNG = "PAGE_HUNG"
    NO_DOCUMENT_REQUEST = "NO_DOCUMENT_REQUEST"
    FAILED_DOCUMENT_REQUEST = "FAILED_DOCUMENT_REQUEST"
    ERRORED_DOCUMENT_REQUEST = "ERRORED_DOCUMENT_REQUEST"
    DNS_FAILURE = "DNS_FAILURE"
    CHROME_INTERSTITIAL_ERROR = "CHROME_INTERSTITIAL_ERROR"
    INSECURE_DOCUMENT_REQUEST = "INSECURE_DOCUMENT_REQUEST"
    NOT_HTML = "NOT_HTML"


_UNABLE_TO_LOAD = (
    "The page could not be loaded reliably. Make sure you are testing the correct URL "
    "and that the server is properly responding to all requests."
)

_FRIENDLY_MESSAGES = {
    NavigationErrorCode.NO_FCP: (
        "The page did not paint any content. Please ensure you keep the browser window "
        "in the foreground during the load and try again."
    ),
    NavigationErrorCode.PAGE_HUNG: (
        "The URL you have provided appears to be slow to respond or unresponsive. "
        "The page stopped answering protocol commands while loading."
    ),
    NavigationErrorCode.NO_DOCUMENT_REQUEST: _UNABLE_TO_LOAD,
    NavigationErrorCode.FAILED_DOCUMENT_REQUEST: _UNABLE_TO_LOAD + " (Details: {error_details})",
    NavigationErrorCode.ERRORED_DOCUMENT_REQUEST: _UNABLE_TO_LOAD + " (Status code: {status_code})",
    NavigationErrorCode.DNS_FAILURE: (
        "DNS servers could not resolve the provided domain."
    ),
    NavigationErrorCode.CHROME_INTERSTITIAL_ERROR: (
        "The browser prevented the page from loading with an interstitial. Make sure you "
        "are testing the correct URL and that the server is properly responding to all requests."
    ),
    NavigationErrorCode.INSECURE_DOCUMENT_REQUEST: (
        "The URL you have provided does not have a valid security certificate. {security_messages}"
    ),
    NavigationErrorCode.NOT_HTML: (
        "The page provided is not HTML (served as MIME type {mime_type})."
    ),
}


class NavigationError(GatherError):
    """A classified page-load failure."""

    def __init__(self, code: NavigationErrorCode, **details: Any):
        code = NavigationErrorCode(code)
        super().__init__(
            message=code.value,
            error_code=code.value,
            details=details
        )
        self.code = code

    @property
    def friendly_message(self) -> str:
        """Human-readable explanation of the failure."""
        template = _FRIENDLY_MESSAGES[self.code]
        values = {
            "error_details": "", "status_code": "", "security_messages": "", "mime_type": "",
        }
        values.update({key: value for key, value in self.details.items() if value is not None})
        return template.format(**values)

    @property
    def is_soft_failure(self) -> bool:
        """Whether the runner may continue collecting diagnostics after this error."""
        return self.code in (NavigationErrorCode.NO_FCP, NavigationErrorCode.PAGE_HUNG)

    def __repr__(self) -> str:
        return f"NavigationError(code={self.code.value})"


class CollectorError(GatherError):
    """Wraps an exception raised by one collector.

    Stored as that artifact's value; never propagated to sibling collectors.
    """

    def __init__(self, artifact_id: str, phase: str, cause: BaseException):
        super().__init__(
            message=f"Collector for artifact \"{artifact_id}\" failed during {phase}: {cause}",
            error_code="collector_failed",
            details={"artifact_id": artifact_id, "phase": phase}
        )
        self.artifact_id = artifact_id
        self.phase = phase
        self.cause = cause
