import base64
import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

GROUP = "cert-manager.k8s.cloudflare.com"
VERSION = "v1"
API_VERSION = f"{GROUP}/{VERSION}"

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"

CONDITION_READY = "Ready"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

REQUEST_TYPE_ORIGIN_RSA = "OriginRSA"
REQUEST_TYPE_ORIGIN_ECC = "OriginECC"

# Values the Cloudflare API expects for each issuer request type.
API_REQUEST_TYPES = {
    REQUEST_TYPE_ORIGIN_RSA: "origin-rsa",
    REQUEST_TYPE_ORIGIN_ECC: "origin-ecc",
}

# cert-manager's default when a CertificateRequest has no duration.
DEFAULT_CERTIFICATE_DURATION = timedelta(days=90)


class IssuerKind(str, Enum):
    NAMESPACED = "OriginIssuer"
    CLUSTER = "ClusterOriginIssuer"

    @property
    def plural(self) -> str:
        return {
            IssuerKind.NAMESPACED: "originissuers",
            IssuerKind.CLUSTER: "clusteroriginissuers",
        }[self]


@dataclass(frozen=True)
class IssuerRef:
    """Identifies an issuer of either scope."""

    kind: IssuerKind
    name: str
    namespace: Optional[str] = None

    @classmethod
    def namespaced(cls, name: str, namespace: str) -> "IssuerRef":
        return cls(IssuerKind.NAMESPACED, name, namespace)

    @classmethod
    def cluster(cls, name: str) -> "IssuerRef":
        return cls(IssuerKind.CLUSTER, name)

    @property
    def is_cluster(self) -> bool:
        return self.kind is IssuerKind.CLUSTER

    def secret_namespace(self, cluster_resource_namespace: str) -> str:
        """Namespace holding the issuer's auth secret."""
        if self.is_cluster:
            return cluster_resource_namespace
        return self.namespace

    def __str__(self) -> str:
        if self.is_cluster:
            return f"{self.kind.value}/{self.name}"
        return f"{self.kind.value}/{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``2160h0m0s``."""
    text = value.strip()
    sign = 1
    if text and text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if not text or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * seconds)


def validity_days(duration: Optional[timedelta]) -> int:
    """Whole days in ``duration``, truncated."""
    if duration is None:
        duration = DEFAULT_CERTIFICATE_DURATION
    return int(duration.total_seconds() // 86400)


def _unknown_keys(data: Dict[str, Any], known) -> Dict[str, Any]:
    """Copy of the keys in ``data`` this operator does not manage."""
    return {k: copy.deepcopy(v) for k, v in data.items() if k not in known}


@dataclass
class SecretKeySelector:
    name: str
    key: str

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SecretKeySelector"]:
        if not data:
            return None
        return cls(name=data.get("name", ""), key=data.get("key", ""))


@dataclass
class OriginIssuerAuthentication:
    serviceKeyRef: Optional[SecretKeySelector] = None
    tokenRef: Optional[SecretKeySelector] = None


@dataclass
class OriginIssuerSpec:
    requestType: str = ""
    auth: OriginIssuerAuthentication = field(default_factory=OriginIssuerAuthentication)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OriginIssuerSpec":
        data = data or {}
        auth = data.get("auth") or {}
        return cls(
            requestType=data.get("requestType", ""),
            auth=OriginIssuerAuthentication(
                serviceKeyRef=SecretKeySelector.from_dict(auth.get("serviceKeyRef")),
                tokenRef=SecretKeySelector.from_dict(auth.get("tokenRef")),
            ),
        )


@dataclass
class Condition:
    type: str
    status: str
    lastTransitionTime: Optional[datetime] = None
    reason: str = ""
    message: str = ""
    # Keys written by other controllers, such as observedGeneration.
    extra: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = ("type", "status", "lastTransitionTime", "reason", "message")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=data.get("status", CONDITION_UNKNOWN),
            lastTransitionTime=parse_time(data.get("lastTransitionTime")),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            extra=_unknown_keys(data, cls._FIELDS),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update({"type": self.type, "status": self.status})
        if self.lastTransitionTime is not None:
            result["lastTransitionTime"] = format_time(self.lastTransitionTime)
        if self.reason:
            result["reason"] = self.reason
        if self.message:
            result["message"] = self.message
        return result


def _conditions_from(data: Dict[str, Any]) -> List[Condition]:
    return [Condition.from_dict(c) for c in data.get("conditions") or []]


@dataclass
class OriginIssuerStatus:
    conditions: List[Condition] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OriginIssuerStatus":
        data = data or {}
        return cls(
            conditions=_conditions_from(data),
            extra=_unknown_keys(data, ("conditions",)),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result["conditions"] = [c.to_dict() for c in self.conditions]
        return result


@dataclass
class ObjectMeta:
    name: str
    namespace: Optional[str] = None
    resourceVersion: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            resourceVersion=data.get("resourceVersion"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name}
        if self.namespace:
            result["namespace"] = self.namespace
        if self.resourceVersion:
            result["resourceVersion"] = self.resourceVersion
        return result


@dataclass
class OriginIssuer:
    """An OriginIssuer or ClusterOriginIssuer; ``ref.kind`` tells them apart."""

    ref: IssuerRef
    metadata: ObjectMeta
    spec: OriginIssuerSpec = field(default_factory=OriginIssuerSpec)
    status: OriginIssuerStatus = field(default_factory=OriginIssuerStatus)

    @classmethod
    def from_dict(cls, kind: IssuerKind, body: Dict[str, Any]) -> "OriginIssuer":
        metadata = ObjectMeta.from_dict(body.get("metadata") or {})
        return cls(
            ref=IssuerRef(kind, metadata.name, metadata.namespace),
            metadata=metadata,
            spec=OriginIssuerSpec.from_dict(body.get("spec")),
            status=OriginIssuerStatus.from_dict(body.get("status")),
        )

    def status_body(self) -> Dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": self.ref.kind.value,
            "metadata": self.metadata.to_dict(),
            "status": self.status.to_dict(),
        }


@dataclass
class ObjectReference:
    name: str
    kind: str = ""
    group: str = ""

    def issuer_kind(self) -> Optional[IssuerKind]:
        """IssuerKind this reference targets, or None if it is not one of ours."""
        if self.group != GROUP:
            return None
        if self.kind in ("", IssuerKind.NAMESPACED.value):
            return IssuerKind.NAMESPACED
        if self.kind == IssuerKind.CLUSTER.value:
            return IssuerKind.CLUSTER
        return None


@dataclass
class CertificateRequestSpec:
    request: bytes
    issuerRef: ObjectReference
    duration: Optional[timedelta] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CertificateRequestSpec":
        issuer_ref = data.get("issuerRef") or {}
        duration = data.get("duration")
        return cls(
            request=base64.b64decode(data.get("request") or ""),
            issuerRef=ObjectReference(
                name=issuer_ref.get("name", ""),
                kind=issuer_ref.get("kind", ""),
                group=issuer_ref.get("group", ""),
            ),
            duration=parse_duration(duration) if duration else None,
        )


@dataclass
class CertificateRequestStatus:
    conditions: List[Condition] = field(default_factory=list)
    certificate: Optional[bytes] = None
    # ca, failureTime and anything else cert-manager records.
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CertificateRequestStatus":
        data = data or {}
        certificate = data.get("certificate")
        return cls(
            conditions=_conditions_from(data),
            certificate=base64.b64decode(certificate) if certificate else None,
            extra=_unknown_keys(data, ("conditions", "certificate")),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(self.extra)
        result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.certificate:
            result["certificate"] = base64.b64encode(self.certificate).decode("ascii")
        return result


@dataclass
class CertificateRequest:
    metadata: ObjectMeta
    spec: CertificateRequestSpec
    status: CertificateRequestStatus = field(default_factory=CertificateRequestStatus)

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "CertificateRequest":
        return cls(
            metadata=ObjectMeta.from_dict(body.get("metadata") or {}),
            spec=CertificateRequestSpec.from_dict(body.get("spec") or {}),
            status=CertificateRequestStatus.from_dict(body.get("status")),
        )

    def issuer_ref(self) -> Optional[IssuerRef]:
        kind = self.spec.issuerRef.issuer_kind()
        if kind is None:
            return None
        if kind is IssuerKind.CLUSTER:
            return IssuerRef.cluster(self.spec.issuerRef.name)
        return IssuerRef.namespaced(self.spec.issuerRef.name, self.metadata.namespace)

    def status_body(self) -> Dict[str, Any]:
        return {
            "apiVersion": f"{CERT_MANAGER_GROUP}/{CERT_MANAGER_VERSION}",
            "kind": "CertificateRequest",
            "metadata": self.metadata.to_dict(),
            "status": self.status.to_dict(),
        }
