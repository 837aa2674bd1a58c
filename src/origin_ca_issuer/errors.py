"""
Operator error hierarchy.

Every failure raised by the reconcilers is an OperatorError carrying its retry
behaviour, so the kopf handlers can translate it without inspecting messages.
"""

from typing import Any, Dict, List, Optional

import kopf


class OperatorError(Exception):
    """Base class for all operator errors."""

    def __init__(
        self,
        message: str,
        category: str = "operator",
        retryable: bool = True,
        delay: int = 30,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay

    def as_kopf_error(self):
        """Convert to the kopf exception that drives the retry policy."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        return kopf.PermanentError(str(self))


class ValidationError(OperatorError):
    """Issuer spec is invalid. Never written to status, never retried."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, category="validation", retryable=False)


class ClientConfigurationError(OperatorError):
    def __init__(self, message: str):
        super().__init__(message, category="configuration", retryable=False)


class CredentialError(OperatorError):
    """The auth secret could not be read."""

    reason = "Error"

    def __init__(self, message: str, retryable: bool = True, delay: int = 30):
        super().__init__(
            message, category="credentials", retryable=retryable, delay=delay
        )


class SecretNotFoundError(CredentialError):
    reason = "NotFound"

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f'secret "{name}" not found in namespace "{namespace}"')


class SecretKeyNotFoundError(CredentialError):
    reason = "NotFound"

    def __init__(self, name: str, key: str):
        self.name = name
        self.key = key
        # Needs an edit to the secret or the issuer before it can succeed.
        super().__init__(
            f"secret {name} does not contain key {key!r}", retryable=False
        )


class MissingAuthenticationError(OperatorError):
    def __init__(self, issuer_name: str):
        super().__init__(
            f"issuer {issuer_name} does not have an authentication method configured",
            category="configuration",
            retryable=False,
        )


class ResourceNotFoundError(OperatorError):
    def __init__(self, kind: str, name: str, namespace: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f" in namespace {namespace}" if namespace else ""
        super().__init__(f"{kind} {name} not found{where}", category="store")


class IssuerNotFoundError(ResourceNotFoundError):
    pass


class IssuerNotReadyError(OperatorError):
    def __init__(self, issuer_name: str, delay: int = 30):
        super().__init__(
            f"Issuer {issuer_name} is not ready", category="dependency", delay=delay
        )


class StatusUpdateError(OperatorError):
    def __init__(self, message: str, delay: int = 5):
        super().__init__(message, category="store", delay=delay)


class StatusWriteConflictError(StatusUpdateError):
    """Optimistic concurrency failure on a status write."""


class TransportError(OperatorError):
    """Network or envelope-level failure talking to the signing API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, category="external", delay=60)


class ResponseDecodeError(OperatorError):
    def __init__(self, message: str):
        super().__init__(message, category="external", retryable=False)


class APIError(OperatorError):
    """
    Error reported by the Cloudflare API in a ``success: false`` envelope.

    Two APIErrors compare equal when their codes match, so callers can test for
    a class of failure without comparing messages.
    """

    def __init__(
        self,
        code: int,
        message: str = "",
        ray_id: str = "",
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.code = code
        self.api_message = message
        self.ray_id = ray_id
        self.errors = errors or [{"code": code, "message": message}]
        super().__init__(
            f"Cloudflare API Error code={code} message={message} ray_id={ray_id}",
            category="external",
            delay=60,
        )

    def __eq__(self, other):
        if not isinstance(other, APIError):
            return NotImplemented
        return self.code == other.code

    def __hash__(self):
        return hash((APIError, self.code))


class InvalidCSRError(OperatorError):
    def __init__(self, message: str):
        super().__init__(message, category="validation", retryable=False)


class SigningError(OperatorError):
    """Wraps the failure of a sign call; raise it ``from`` the original error."""

    def __init__(self, cause: Exception):
        retryable = getattr(cause, "retryable", True)
        delay = getattr(cause, "delay", 60)
        super().__init__(
            f"unable to sign request: {cause}",
            category="signing",
            retryable=retryable,
            delay=delay,
        )


def error_matches(err: Optional[BaseException], target) -> bool:
    """
    Report whether ``err`` or any exception in its ``__cause__`` chain matches
    ``target``.

    ``target`` may be an exception class (isinstance check) or an instance
    (equality check, so ``APIError(code=9001)`` matches any error with that code).
    """
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(target, type):
            if isinstance(err, target):
                return True
        elif type(err) is type(target) and err == target:
            return True
        err = err.__cause__
    return False


def find_error(err: Optional[BaseException], cls):
    """Return the first exception of type ``cls`` in the ``__cause__`` chain."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, cls):
            return err
        err = err.__cause__
    return None
