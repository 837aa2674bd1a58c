import logging
from datetime import datetime
from typing import Callable, List, Optional

from cryptography import x509

from .cfapi_client import ClientBuilder, SignRequest
from .conditions import has_condition, set_condition
from .credentials import CredentialResolver
from .errors import (
    IssuerNotFoundError,
    IssuerNotReadyError,
    InvalidCSRError,
    MissingAuthenticationError,
    OperatorError,
    SigningError,
)
from .issuer_reconciler import utcnow
from .models import (
    API_REQUEST_TYPES,
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_TRUE,
    CertificateRequest,
    OriginIssuer,
    ReconcileResult,
    validity_days,
)
from .security import SecurityValidator
from .store import ResourceStore

logger = logging.getLogger(__name__)

REASON_ISSUED = "Issued"
REASON_FAILED = "Failed"
REASON_PENDING = "Pending"


def csr_hostnames(csr_pem: bytes) -> List[str]:
    """DNS names from the CSR's subject alternative names, in CSR order."""
    try:
        csr = x509.load_pem_x509_csr(csr_pem)
    except ValueError as e:
        raise InvalidCSRError(f"unable to parse CSR: {e}") from e

    try:
        sans = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    return sans.get_values_for_type(x509.DNSName)


class CertificateRequestReconciler:
    """Signs cert-manager CertificateRequests that reference an origin issuer."""

    def __init__(
        self,
        store: ResourceStore,
        credentials: CredentialResolver,
        builder: ClientBuilder,
        cluster_resource_namespace: str,
        issuer_not_ready_requeue: int = 30,
        api_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.credentials = credentials
        self.builder = builder
        self.cluster_resource_namespace = cluster_resource_namespace
        self.issuer_not_ready_requeue = issuer_not_ready_requeue
        self.api_timeout = api_timeout
        self.clock = clock

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        cr = await self.store.get_certificate_request(namespace, name)

        ref = cr.issuer_ref()
        if ref is None:
            logger.debug(
                f"Ignoring CertificateRequest {namespace}/{name} for issuer "
                f"{cr.spec.issuerRef.group}/{cr.spec.issuerRef.kind}"
            )
            return ReconcileResult()

        if has_condition(cr.status, CONDITION_READY, CONDITION_TRUE) and cr.status.certificate:
            logger.debug(f"CertificateRequest {namespace}/{name} already issued")
            return ReconcileResult()

        try:
            issuer = await self.store.get_issuer(ref)
        except IssuerNotFoundError as e:
            logger.error(f"Failed to retrieve {ref} for {namespace}/{name}: {e}")
            await self._set_status_best_effort(
                cr, CONDITION_FALSE, REASON_PENDING, f"Issuer {ref.name} not found"
            )
            raise

        try:
            self._require_ready(issuer)
        except IssuerNotReadyError as e:
            logger.info(f"CertificateRequest {namespace}/{name} waiting: {e}")
            await self._set_status(cr, CONDITION_FALSE, REASON_PENDING, str(e))
            return ReconcileResult(requeue_after=e.delay)

        try:
            credential = await self._resolve_credential(issuer)
        except OperatorError as e:
            logger.error(
                f"Failed to retrieve credentials of {ref} for {namespace}/{name}: {e}"
            )
            await self._set_status_best_effort(
                cr, CONDITION_FALSE, REASON_PENDING, f"Failed to retrieve auth secret: {e}"
            )
            raise

        try:
            hostnames = csr_hostnames(cr.spec.request)
        except InvalidCSRError as e:
            await self._set_status_best_effort(cr, CONDITION_FALSE, REASON_FAILED, str(e))
            raise

        try:
            SecurityValidator.validate_issuer_spec(issuer.spec)
            request = SignRequest(
                hostnames=hostnames,
                csr=cr.spec.request.decode("utf-8"),
                requested_validity=validity_days(cr.spec.duration),
                request_type=API_REQUEST_TYPES[issuer.spec.requestType],
            )
            api = self._builder_for(issuer, credential).build()
            response = await api.sign(request, timeout=self.api_timeout)
        except OperatorError as e:
            err = SigningError(e)
            logger.error(f"Failed to sign CertificateRequest {namespace}/{name}: {err}")
            await self._set_status_best_effort(cr, CONDITION_FALSE, REASON_FAILED, str(err))
            raise err from e

        logger.info(
            f"Signed CertificateRequest {namespace}/{name} with {ref}, "
            f"certificate {response.id} expires {response.expires_on.isoformat()}"
        )
        cr.status.certificate = response.certificate.encode("utf-8")
        await self._set_status(cr, CONDITION_TRUE, REASON_ISSUED, "Certificate issued")
        return ReconcileResult()

    def _require_ready(self, issuer: OriginIssuer) -> None:
        if not has_condition(issuer.status, CONDITION_READY, CONDITION_TRUE):
            raise IssuerNotReadyError(issuer.ref.name, delay=self.issuer_not_ready_requeue)

    async def _resolve_credential(self, issuer: OriginIssuer) -> bytes:
        selector = issuer.spec.auth.serviceKeyRef or issuer.spec.auth.tokenRef
        if selector is None:
            raise MissingAuthenticationError(issuer.ref.name)

        namespace = issuer.ref.secret_namespace(self.cluster_resource_namespace)
        return await self.credentials.resolve(selector, namespace)

    def _builder_for(self, issuer: OriginIssuer, credential: bytes) -> ClientBuilder:
        if issuer.spec.auth.serviceKeyRef is not None:
            return self.builder.with_service_key(credential)
        return self.builder.with_token(credential)

    async def _set_status(
        self, cr: CertificateRequest, status: str, reason: str, message: str
    ) -> None:
        set_condition(cr.status, CONDITION_READY, status, reason, message, self.clock())
        await self.store.update_certificate_request_status(cr)

    async def _set_status_best_effort(
        self, cr: CertificateRequest, status: str, reason: str, message: str
    ) -> None:
        try:
            await self._set_status(cr, status, reason, message)
        except OperatorError as e:
            logger.error(
                f"Failed to update status of CertificateRequest "
                f"{cr.metadata.namespace}/{cr.metadata.name}: {e}"
            )
