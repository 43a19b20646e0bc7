import re
from typing import Optional, Dict, Any, List


class SpendSyncException(Exception):
    """Base exception for all SpendSync errors."""
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            body["hint"] = self.hint
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(SpendSyncException):
    """
    Missing or incomplete connection configuration (role ARN, external id,
    required manual credential fields). User-fixable; retrying is pointless
    until the account is reconfigured.
    """
    def __init__(self, message: str, code: str = "configuration_error", details: Optional[Dict[str, Any]] = None, hint: Optional[str] = None):
        super().__init__(message, code=code, status_code=400, details=details, hint=hint)


class AuthorizationError(SpendSyncException):
    """Raised when the provider rejects a role exchange or the supplied keys."""
    def __init__(self, message: str, code: str = "authorization_error", details: Optional[Dict[str, Any]] = None, hint: Optional[str] = None):
        super().__init__(message, code=code, status_code=403, details=details, hint=hint)


class CredentialError(SpendSyncException):
    """Transient failure while exchanging credentials. Safe to retry."""
    retryable = True

    def __init__(self, message: str, code: str = "credential_error", details: Optional[Dict[str, Any]] = None, hint: Optional[str] = None):
        super().__init__(message, code=code, status_code=503, details=details, hint=hint)


class ProviderAPIError(SpendSyncException):
    """
    Raised when an external billing API fails (timeout, rate limit, malformed response).
    Messages are sanitized so request ids and key material never reach users or logs.
    """
    retryable = True

    def __init__(self, message: str, code: str = "provider_api_error", details: Optional[Dict[str, Any]] = None, hint: Optional[str] = None):
        super().__init__(self._sanitize(message), code=code, status_code=502, details=details, hint=hint)

    @staticmethod
    def _sanitize(msg: str) -> str:
        # Request ids
        msg = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '[REDACTED_ID]', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(?i)(access_key|secret_key|token|password|signature|api_key)=[^&\s]+', r'\1=[REDACTED]', msg)
        msg = re.sub(r'(?i)bearer\s+[a-z0-9._\-]+', 'Bearer [REDACTED]', msg)
        if "AccessDenied" in msg or "Unauthorized" in msg:
            return "Permission denied: the connected credentials lack read access to billing data."
        if "Throttling" in msg or "RequestLimitExceeded" in msg or "429" in msg:
            return "Cloud provider rate limit exceeded. Try the sync again later."
        return msg


class ValidationError(SpendSyncException):
    """A normalized cost payload failed structural checks."""
    def __init__(self, message: str, issues: Optional[List[str]] = None, code: str = "validation_error", details: Optional[Dict[str, Any]] = None):
        self.issues = issues or []
        details = dict(details or {})
        if self.issues:
            details.setdefault("issues", self.issues)
        super().__init__(message, code=code, status_code=422, details=details)


class PersistenceError(SpendSyncException):
    """Raised when a database write for one account fails."""
    def __init__(self, message: str, code: str = "persistence_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ResourceNotFoundError(SpendSyncException):
    """Raised when a requested resource is not found."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)
