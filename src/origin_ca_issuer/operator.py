import logging
from typing import Optional

import kopf

from .certificate_request_reconciler import CertificateRequestReconciler
from .cfapi_client import ClientBuilder
from .credentials import CredentialResolver
from .errors import (
    CredentialError,
    IssuerNotFoundError,
    MissingAuthenticationError,
    OperatorError,
    ResourceNotFoundError,
)
from .issuer_reconciler import OriginIssuerReconciler
from .models import (
    CERT_MANAGER_GROUP,
    CERT_MANAGER_VERSION,
    GROUP,
    VERSION,
    IssuerKind,
    IssuerRef,
    ReconcileResult,
)
from .security import SecurityValidator
from .settings import Settings
from .store import ResourceStore

logger = logging.getLogger(__name__)


class OriginCAOperator:
    """Wires the reconcilers to their Kubernetes and Cloudflare collaborators."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[ResourceStore] = None,
        credentials: Optional[CredentialResolver] = None,
        builder: Optional[ClientBuilder] = None,
    ):
        self.settings = settings or Settings()
        self.store = store or ResourceStore()
        self.credentials = credentials or CredentialResolver()
        self.builder = builder or (
            ClientBuilder()
            .with_endpoint(self.settings.api_endpoint)
            .with_timeout(self.settings.api_timeout)
        )

        self.issuers = OriginIssuerReconciler(
            self.store,
            self.credentials,
            self.settings.cluster_resource_namespace,
        )
        self.certificate_requests = CertificateRequestReconciler(
            self.store,
            self.credentials,
            self.builder,
            self.settings.cluster_resource_namespace,
            issuer_not_ready_requeue=self.settings.issuer_not_ready_requeue,
            api_timeout=self.settings.api_timeout,
        )


_operator: Optional[OriginCAOperator] = None


def configure(settings: Settings) -> OriginCAOperator:
    """Build the operator once Kubernetes configuration has been loaded."""
    global _operator
    _operator = OriginCAOperator(settings)
    return _operator


def get_operator() -> OriginCAOperator:
    global _operator
    if _operator is None:
        _operator = OriginCAOperator()
    return _operator


def _raise_for_result(result: ReconcileResult, what: str) -> None:
    if result.requeue:
        raise kopf.TemporaryError(
            f"{what} is waiting on its issuer", delay=result.requeue_after
        )


async def _reconcile_issuer(ref: IssuerRef, body) -> None:
    logger.debug(
        f"Reconciling {ref}: {SecurityValidator.sanitize_log_data(dict(body.get('spec', {})))}"
    )
    try:
        result = await get_operator().issuers.reconcile(ref)
    except IssuerNotFoundError:
        logger.info(f"{ref} no longer exists")
        return
    except OperatorError as e:
        raise e.as_kopf_error() from e

    _raise_for_result(result, str(ref))


@kopf.on.resume(GROUP, VERSION, IssuerKind.NAMESPACED.plural)
@kopf.on.create(GROUP, VERSION, IssuerKind.NAMESPACED.plural)
@kopf.on.update(GROUP, VERSION, IssuerKind.NAMESPACED.plural)
async def reconcile_origin_issuer(body, name, namespace, **kwargs):
    """Handle OriginIssuer creation, changes and operator restarts"""
    await _reconcile_issuer(IssuerRef.namespaced(name, namespace), body)


@kopf.on.resume(GROUP, VERSION, IssuerKind.CLUSTER.plural)
@kopf.on.create(GROUP, VERSION, IssuerKind.CLUSTER.plural)
@kopf.on.update(GROUP, VERSION, IssuerKind.CLUSTER.plural)
async def reconcile_cluster_origin_issuer(body, name, **kwargs):
    """Handle ClusterOriginIssuer creation, changes and operator restarts"""
    await _reconcile_issuer(IssuerRef.cluster(name), body)


def is_origin_request(spec, **_) -> bool:
    return (spec.get("issuerRef") or {}).get("group") == GROUP


@kopf.on.resume(
    CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, "certificaterequests", when=is_origin_request
)
@kopf.on.create(
    CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, "certificaterequests", when=is_origin_request
)
async def reconcile_certificate_request(name, namespace, **kwargs):
    """Sign CertificateRequests that reference an origin issuer"""
    logger.debug(f"Reconciling CertificateRequest {namespace}/{name}")
    op = get_operator()
    try:
        result = await op.certificate_requests.reconcile(namespace, name)
    except IssuerNotFoundError as e:
        raise e.as_kopf_error() from e
    except ResourceNotFoundError:
        logger.info(f"CertificateRequest {namespace}/{name} no longer exists")
        return
    except (CredentialError, MissingAuthenticationError) as e:
        # Only create and resume reach this handler, so issuer-side fixes
        # are picked up by retrying.
        raise kopf.TemporaryError(
            str(e), delay=op.settings.issuer_not_ready_requeue
        ) from e
    except OperatorError as e:
        raise e.as_kopf_error() from e

    _raise_for_result(result, f"CertificateRequest {namespace}/{name}")
