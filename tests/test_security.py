import pytest

from origin_ca_issuer.errors import ValidationError
from origin_ca_issuer.models import OriginIssuerSpec
from origin_ca_issuer.security import SecurityValidator


def spec(request_type="OriginECC", service_key_ref=None, token_ref=None):
    auth = {}
    if service_key_ref:
        auth["serviceKeyRef"] = service_key_ref
    if token_ref:
        auth["tokenRef"] = token_ref
    return OriginIssuerSpec.from_dict({"requestType": request_type, "auth": auth})


class TestSecurityValidator:

    def test_validate_url_valid(self):
        assert (
            SecurityValidator.validate_url("https://api.cloudflare.com/client/v4/certificates")
            == "https://api.cloudflare.com/client/v4/certificates"
        )
        assert SecurityValidator.validate_url("https://api.example.com/") == "https://api.example.com"
        assert SecurityValidator.validate_url("http://localhost:8080") == "http://localhost:8080"

    def test_validate_url_invalid(self):
        # Empty URL
        with pytest.raises(ValueError, match="URL cannot be empty"):
            SecurityValidator.validate_url("")

        # No scheme
        with pytest.raises(ValueError, match="URL must include scheme"):
            SecurityValidator.validate_url("api.cloudflare.com")

        # Invalid scheme
        with pytest.raises(ValueError, match="URL scheme must be one of"):
            SecurityValidator.validate_url("ftp://api.cloudflare.com")

        # No hostname
        with pytest.raises(ValueError, match="URL must include hostname"):
            SecurityValidator.validate_url("https://")

        # Too long URL
        long_url = "https://" + "a" * 2100
        with pytest.raises(ValueError, match="URL exceeds maximum length"):
            SecurityValidator.validate_url(long_url)

    def test_validate_issuer_spec_valid(self):
        for request_type in ("OriginRSA", "OriginECC"):
            validated = SecurityValidator.validate_issuer_spec(
                spec(request_type, service_key_ref={"name": "service-key", "key": "key"})
            )
            assert validated.requestType == request_type

        # No auth is a status problem, not a validation error
        SecurityValidator.validate_issuer_spec(spec())

        # Secret names may be DNS subdomains
        SecurityValidator.validate_issuer_spec(
            spec(token_ref={"name": "cf.api-token", "key": "api_token.txt"})
        )

    def test_validate_issuer_spec_invalid_request_type(self):
        with pytest.raises(ValidationError, match="cannot be empty") as exc:
            SecurityValidator.validate_issuer_spec(spec(""))
        assert exc.value.field == "spec.requestType"
        assert exc.value.retryable is False

        with pytest.raises(ValidationError, match="invalid value 'MD4'"):
            SecurityValidator.validate_issuer_spec(spec("MD4"))

        # Enum values are case sensitive
        with pytest.raises(ValidationError, match="invalid value"):
            SecurityValidator.validate_issuer_spec(spec("originecc"))

    def test_validate_issuer_spec_both_refs(self):
        with pytest.raises(ValidationError, match="cannot set both") as exc:
            SecurityValidator.validate_issuer_spec(
                spec(
                    service_key_ref={"name": "a", "key": "key"},
                    token_ref={"name": "b", "key": "token"},
                )
            )
        assert exc.value.field == "spec.auth"

    @pytest.mark.parametrize(
        "ref,message",
        [
            ({"name": "", "key": "key"}, "secret name cannot be empty"),
            ({"name": "Invalid_Name", "key": "key"}, "valid DNS subdomain"),
            ({"name": "a" * 300, "key": "key"}, "exceeds maximum length"),
            ({"name": "service-key", "key": ""}, "secret key cannot be empty"),
            ({"name": "service-key", "key": "key with spaces"}, "invalid characters"),
        ],
    )
    def test_validate_issuer_spec_bad_secret_ref(self, ref, message):
        with pytest.raises(ValidationError, match=message) as exc:
            SecurityValidator.validate_issuer_spec(spec(token_ref=ref))
        assert exc.value.field == "spec.auth.tokenRef"

    def test_sanitize_log_data(self):
        data = {
            "requestType": "OriginECC",
            "auth": {
                "serviceKeyRef": {"name": "service-key", "key": "key"},
            },
            "authorization": "Bearer abc",
            "metadata": {
                "token": "secret-token",
                "name": "public-name",
            },
        }

        sanitized = SecurityValidator.sanitize_log_data(data)

        assert sanitized["requestType"] == "OriginECC"
        assert sanitized["authorization"] == "[REDACTED]"
        assert sanitized["metadata"]["token"] == "[REDACTED]"
        assert sanitized["metadata"]["name"] == "public-name"
        # Refs name a secret without revealing it
        assert sanitized["auth"]["serviceKeyRef"]["name"] == "service-key"
        # ...but the key field inside a ref is still redacted
        assert sanitized["auth"]["serviceKeyRef"]["key"] == "[REDACTED]"

    def test_sanitize_log_data_lists(self):
        sanitized = SecurityValidator.sanitize_log_data(
            [{"password": "hunter2"}, "plain", 3]
        )

        assert sanitized == [{"password": "[REDACTED]"}, "plain", 3]
