import logging
import re
from typing import Any
from urllib.parse import urlparse

from .errors import ValidationError
from .models import API_REQUEST_TYPES, OriginIssuerSpec

logger = logging.getLogger(__name__)


class SecurityValidator:
    """Validation and log-sanitizing helpers for the operator"""

    ALLOWED_SCHEMES = {"https", "http"}

    MAX_URL_LENGTH = 2048
    MAX_SECRET_NAME_LENGTH = 253
    MAX_KEY_LENGTH = 253

    DNS_SUBDOMAIN_REGEX = re.compile(
        r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
    )
    SECRET_KEY_REGEX = re.compile(r"^[a-zA-Z0-9._-]+$")

    SENSITIVE_WORDS = ("key", "secret", "token", "password", "authorization")

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Validate and normalize an API endpoint URL"""
        if not url:
            raise ValueError("URL cannot be empty")

        if len(url) > cls.MAX_URL_LENGTH:
            raise ValueError(f"URL exceeds maximum length of {cls.MAX_URL_LENGTH}")

        parsed = urlparse(url)

        if not parsed.scheme:
            raise ValueError("URL must include scheme (http/https)")

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValueError(
                f"URL scheme must be one of: {', '.join(sorted(cls.ALLOWED_SCHEMES))}"
            )

        if not parsed.netloc:
            raise ValueError("URL must include hostname")

        if parsed.scheme.lower() == "http":
            logger.warning(f"Using plaintext endpoint: {url}")

        clean_url = f"{parsed.scheme}://{parsed.netloc}"
        if parsed.path and parsed.path != "/":
            clean_url += parsed.path

        return clean_url

    @classmethod
    def validate_issuer_spec(cls, spec: OriginIssuerSpec) -> OriginIssuerSpec:
        """Ensure required fields are set and enums hold known values."""
        if not spec.requestType:
            raise ValidationError(
                "spec.requestType cannot be empty", field="spec.requestType"
            )

        if spec.requestType not in API_REQUEST_TYPES:
            raise ValidationError(
                f"spec.requestType has invalid value {spec.requestType!r}",
                field="spec.requestType",
            )

        if spec.auth.serviceKeyRef is not None and spec.auth.tokenRef is not None:
            raise ValidationError(
                "spec.auth cannot set both serviceKeyRef and tokenRef",
                field="spec.auth",
            )

        for field_name in ("serviceKeyRef", "tokenRef"):
            selector = getattr(spec.auth, field_name)
            if selector is None:
                continue
            try:
                cls.validate_secret_name(selector.name)
                cls.validate_secret_key(selector.key)
            except ValueError as e:
                raise ValidationError(
                    f"spec.auth.{field_name}: {e}", field=f"spec.auth.{field_name}"
                ) from e

        return spec

    @classmethod
    def validate_secret_name(cls, name: str) -> str:
        """Validate a Secret name (DNS subdomain)"""
        if not name:
            raise ValueError("secret name cannot be empty")

        if len(name) > cls.MAX_SECRET_NAME_LENGTH:
            raise ValueError(
                f"secret name exceeds maximum length of {cls.MAX_SECRET_NAME_LENGTH}"
            )

        if not cls.DNS_SUBDOMAIN_REGEX.match(name):
            raise ValueError("secret name must be a valid DNS subdomain")

        return name

    @classmethod
    def validate_secret_key(cls, key: str) -> str:
        """Validate secret key names"""
        if not key:
            raise ValueError("secret key cannot be empty")

        if len(key) > cls.MAX_KEY_LENGTH:
            raise ValueError(f"secret key exceeds maximum length of {cls.MAX_KEY_LENGTH}")

        if not cls.SECRET_KEY_REGEX.match(key):
            raise ValueError("secret key contains invalid characters")

        return key

    @classmethod
    def sanitize_log_data(cls, data: Any) -> Any:
        """Sanitize data for logging (remove sensitive information)"""
        if isinstance(data, dict):
            sanitized = {}
            for key, value in data.items():
                lowered = str(key).lower()
                # Refs only name a secret, they are safe to log.
                if lowered.endswith("ref"):
                    sanitized[key] = cls.sanitize_log_data(value)
                elif any(word in lowered for word in cls.SENSITIVE_WORDS):
                    sanitized[key] = "[REDACTED]"
                else:
                    sanitized[key] = cls.sanitize_log_data(value)
            return sanitized
        elif isinstance(data, list):
            return [cls.sanitize_log_data(item) for item in data]
        else:
            return data
