import base64
import copy
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from kubernetes.client.rest import ApiException

from origin_ca_issuer.credentials import CredentialResolver
from origin_ca_issuer.store import ResourceStore

GROUP = "cert-manager.k8s.cloudflare.com"

CERTIFICATE_PEM = "-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n"


class FakeCustomObjectsApi:
    """In-memory stand-in for kubernetes.client.CustomObjectsApi."""

    def __init__(self):
        self.objects = {}
        self.status_updates = []
        self.fail_status_with = None

    def add(self, plural, body):
        meta = body.setdefault("metadata", {})
        meta.setdefault("resourceVersion", "1")
        self.objects[(plural, meta.get("namespace"), meta["name"])] = copy.deepcopy(body)

    def stored(self, plural, name, namespace=None):
        return self.objects[(plural, namespace, name)]

    def _get(self, plural, namespace, name):
        try:
            return copy.deepcopy(self.objects[(plural, namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def _replace_status(self, plural, namespace, name, body):
        if self.fail_status_with is not None:
            raise ApiException(status=self.fail_status_with, reason="Injected")
        current = self.objects.get((plural, namespace, name))
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

        current["status"] = copy.deepcopy(body["status"])
        current["metadata"]["resourceVersion"] = str(
            int(current["metadata"]["resourceVersion"]) + 1
        )
        self.status_updates.append((plural, namespace, name))
        return copy.deepcopy(current)

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        return self._get(plural, namespace, name)

    def get_cluster_custom_object(self, group, version, plural, name):
        return self._get(plural, None, name)

    def replace_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body
    ):
        return self._replace_status(plural, namespace, name, body)

    def replace_cluster_custom_object_status(self, group, version, plural, name, body):
        return self._replace_status(plural, None, name, body)


@pytest.fixture
def now():
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()


@pytest.fixture
def store(custom_api):
    return ResourceStore(custom_api)


@pytest.fixture
def secrets():
    """Secrets visible to the resolver, keyed by (namespace, name)."""
    return {}


@pytest.fixture
def core_api(secrets):
    def read_namespaced_secret(name, namespace):
        if (namespace, name) not in secrets:
            raise ApiException(status=404, reason="Not Found")
        secret = Mock()
        secret.data = {
            key: base64.b64encode(value).decode("ascii")
            for key, value in secrets[(namespace, name)].items()
        }
        return secret

    api = Mock()
    api.read_namespaced_secret.side_effect = read_namespaced_secret
    return api


@pytest.fixture
def credentials(core_api):
    return CredentialResolver(core_api)


@pytest.fixture(scope="session")
def csr_pem():
    key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")]))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName("example.com"), x509.DNSName("www.example.com")]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_issuer():
    def factory(
        name="foobar",
        namespace="default",
        request_type="OriginECC",
        service_key_ref=None,
        token_ref=None,
        conditions=None,
    ):
        auth = {}
        if service_key_ref:
            auth["serviceKeyRef"] = service_key_ref
        if token_ref:
            auth["tokenRef"] = token_ref
        metadata = {"name": name}
        if namespace:
            metadata["namespace"] = namespace
        body = {
            "apiVersion": f"{GROUP}/v1",
            "kind": "OriginIssuer" if namespace else "ClusterOriginIssuer",
            "metadata": metadata,
            "spec": {"requestType": request_type, "auth": auth},
        }
        if conditions is not None:
            body["status"] = {"conditions": conditions}
        return body

    return factory


@pytest.fixture
def make_certificate_request(csr_pem):
    def factory(
        name="foobar",
        namespace="default",
        issuer_name="foobar",
        issuer_kind="OriginIssuer",
        group=GROUP,
        duration="168h0m0s",
        status=None,
    ):
        spec = {
            "request": base64.b64encode(csr_pem).decode("ascii"),
            "issuerRef": {"name": issuer_name, "kind": issuer_kind, "group": group},
        }
        if duration:
            spec["duration"] = duration
        body = {
            "apiVersion": "cert-manager.io/v1",
            "kind": "CertificateRequest",
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }
        if status is not None:
            body["status"] = status
        return body

    return factory


def make_response(envelope, status_code=200, ray_id="0123456789abcdef-ABC"):
    response = Mock()
    response.status_code = status_code
    response.headers = {"cf-ray": ray_id}
    response.json.return_value = envelope
    return response


@pytest.fixture
def success_envelope():
    return {
        "success": True,
        "errors": [],
        "messages": [],
        "result": {
            "id": "9001",
            "certificate": CERTIFICATE_PEM,
            "expires_on": "2020-12-25T06:27:00Z",
            "request_type": "origin-ecc",
            "hostnames": ["example.com"],
            "csr": "-----BEGIN CERTIFICATE REQUEST-----\n-----END CERTIFICATE REQUEST-----",
            "requested_validity": 7,
        },
    }


@pytest.fixture
def http_session(success_envelope):
    session = Mock()
    session.post.return_value = make_response(success_envelope)
    return session


@pytest.fixture
def make_api_response():
    return make_response


@pytest.fixture
def mock_logging():
    """Mock logging to reduce test noise"""
    with (
        patch("origin_ca_issuer.cfapi_client.logger"),
        patch("origin_ca_issuer.issuer_reconciler.logger"),
        patch("origin_ca_issuer.certificate_request_reconciler.logger"),
        patch("origin_ca_issuer.security.logger"),
    ):
        yield
