import logging
from datetime import datetime, timezone
from typing import Callable

from .conditions import set_condition
from .credentials import CredentialResolver
from .errors import CredentialError, OperatorError, ValidationError
from .models import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_TRUE,
    IssuerRef,
    OriginIssuer,
    ReconcileResult,
)
from .security import SecurityValidator
from .store import ResourceStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OriginIssuerReconciler:
    """Validates OriginIssuers and ClusterOriginIssuers and reports readiness."""

    def __init__(
        self,
        store: ResourceStore,
        credentials: CredentialResolver,
        cluster_resource_namespace: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.credentials = credentials
        self.cluster_resource_namespace = cluster_resource_namespace
        self.clock = clock

    async def reconcile(self, ref: IssuerRef) -> ReconcileResult:
        issuer = await self.store.get_issuer(ref)
        spec = issuer.spec

        try:
            SecurityValidator.validate_issuer_spec(spec)
        except ValidationError as e:
            # Spec errors are surfaced directly and never recorded in status.
            logger.error(f"Failed to validate {ref}: {e}")
            raise

        selector = spec.auth.serviceKeyRef or spec.auth.tokenRef
        if selector is None:
            await self._set_status(
                issuer,
                CONDITION_FALSE,
                "MissingAuthentication",
                "No authentication methods were configured",
            )
            return ReconcileResult()

        namespace = ref.secret_namespace(self.cluster_resource_namespace)
        try:
            await self.credentials.resolve(selector, namespace)
        except CredentialError as e:
            logger.error(
                f"Failed to retrieve auth secret for {ref} "
                f"from {namespace}/{selector.name}: {e}"
            )
            await self._set_status_best_effort(
                issuer,
                CONDITION_FALSE,
                e.reason,
                f"Failed to retrieve auth secret: {e}",
            )
            raise

        await self._set_status(
            issuer,
            CONDITION_TRUE,
            "Verified",
            "OriginIssuer verified and ready to sign certificates",
        )
        return ReconcileResult()

    async def _set_status(
        self, issuer: OriginIssuer, status: str, reason: str, message: str
    ) -> None:
        set_condition(
            issuer.status, CONDITION_READY, status, reason, message, self.clock()
        )
        await self.store.update_issuer_status(issuer)

    async def _set_status_best_effort(
        self, issuer: OriginIssuer, status: str, reason: str, message: str
    ) -> None:
        try:
            await self._set_status(issuer, status, reason, message)
        except OperatorError as e:
            logger.error(f"Failed to update status of {issuer.ref}: {e}")
