import asyncio
import base64
import binascii
import logging
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import CredentialError, SecretKeyNotFoundError, SecretNotFoundError
from .models import SecretKeySelector

logger = logging.getLogger(__name__)


class CredentialResolver:
    """Reads issuer credentials out of Kubernetes secrets."""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None):
        self.core_api = core_api or client.CoreV1Api()

    async def resolve(self, selector: SecretKeySelector, namespace: str) -> bytes:
        """Return the decoded value of ``selector.key`` in the named secret."""
        loop = asyncio.get_event_loop()

        try:
            secret = await loop.run_in_executor(
                None,
                lambda: self.core_api.read_namespaced_secret(
                    name=selector.name, namespace=namespace
                ),
            )
        except ApiException as e:
            logger.error(
                f"Failed to retrieve auth secret {namespace}/{selector.name}: "
                f"{e.status} {e.reason}"
            )
            if e.status == 404:
                raise SecretNotFoundError(namespace, selector.name) from e
            raise CredentialError(
                f"failed to read secret {namespace}/{selector.name}: {e.reason}"
            ) from e

        data = secret.data or {}
        if selector.key not in data:
            raise SecretKeyNotFoundError(selector.name, selector.key)

        try:
            return base64.b64decode(data[selector.key], validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError(
                f"secret {selector.name} key {selector.key!r} is not valid base64",
                retryable=False,
            ) from e
