import asyncio
import logging
from typing import Any, Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import (
    IssuerNotFoundError,
    ResourceNotFoundError,
    StatusUpdateError,
    StatusWriteConflictError,
)
from .models import (
    CERT_MANAGER_GROUP,
    CERT_MANAGER_VERSION,
    GROUP,
    VERSION,
    CertificateRequest,
    IssuerRef,
    OriginIssuer,
)

logger = logging.getLogger(__name__)

CERTIFICATE_REQUESTS = "certificaterequests"


class ResourceStore:
    """Typed get and status update for the objects the reconcilers work on."""

    def __init__(self, custom_api: Optional[client.CustomObjectsApi] = None):
        self.custom_api = custom_api or client.CustomObjectsApi()

    async def _call(self, func, **kwargs) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(**kwargs))

    async def get_issuer(self, ref: IssuerRef) -> OriginIssuer:
        try:
            if ref.is_cluster:
                body = await self._call(
                    self.custom_api.get_cluster_custom_object,
                    group=GROUP,
                    version=VERSION,
                    plural=ref.kind.plural,
                    name=ref.name,
                )
            else:
                body = await self._call(
                    self.custom_api.get_namespaced_custom_object,
                    group=GROUP,
                    version=VERSION,
                    namespace=ref.namespace,
                    plural=ref.kind.plural,
                    name=ref.name,
                )
        except ApiException as e:
            if e.status == 404:
                raise IssuerNotFoundError(ref.kind.value, ref.name, ref.namespace) from e
            raise

        return OriginIssuer.from_dict(ref.kind, body)

    async def update_issuer_status(self, issuer: OriginIssuer) -> None:
        ref = issuer.ref
        try:
            if ref.is_cluster:
                body = await self._call(
                    self.custom_api.replace_cluster_custom_object_status,
                    group=GROUP,
                    version=VERSION,
                    plural=ref.kind.plural,
                    name=ref.name,
                    body=issuer.status_body(),
                )
            else:
                body = await self._call(
                    self.custom_api.replace_namespaced_custom_object_status,
                    group=GROUP,
                    version=VERSION,
                    namespace=ref.namespace,
                    plural=ref.kind.plural,
                    name=ref.name,
                    body=issuer.status_body(),
                )
        except ApiException as e:
            raise self._status_error(str(ref), e) from e

        issuer.metadata.resourceVersion = (body.get("metadata") or {}).get(
            "resourceVersion", issuer.metadata.resourceVersion
        )

    async def get_certificate_request(
        self, namespace: str, name: str
    ) -> CertificateRequest:
        try:
            body = await self._call(
                self.custom_api.get_namespaced_custom_object,
                group=CERT_MANAGER_GROUP,
                version=CERT_MANAGER_VERSION,
                namespace=namespace,
                plural=CERTIFICATE_REQUESTS,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFoundError("CertificateRequest", name, namespace) from e
            raise

        return CertificateRequest.from_dict(body)

    async def update_certificate_request_status(self, cr: CertificateRequest) -> None:
        try:
            body = await self._call(
                self.custom_api.replace_namespaced_custom_object_status,
                group=CERT_MANAGER_GROUP,
                version=CERT_MANAGER_VERSION,
                namespace=cr.metadata.namespace,
                plural=CERTIFICATE_REQUESTS,
                name=cr.metadata.name,
                body=cr.status_body(),
            )
        except ApiException as e:
            raise self._status_error(
                f"CertificateRequest/{cr.metadata.namespace}/{cr.metadata.name}", e
            ) from e

        cr.metadata.resourceVersion = (body.get("metadata") or {}).get(
            "resourceVersion", cr.metadata.resourceVersion
        )

    @staticmethod
    def _status_error(what: str, e: ApiException) -> StatusUpdateError:
        if e.status == 409:
            return StatusWriteConflictError(
                f"conflict updating status of {what}: object was modified"
            )
        return StatusUpdateError(f"failed to update status of {what}: {e.reason}")
