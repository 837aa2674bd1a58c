import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import (
    APIError,
    ClientConfigurationError,
    ResponseDecodeError,
    TransportError,
)
from .security import SecurityValidator

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.cloudflare.com/client/v4/certificates"
DEFAULT_TIMEOUT = 30

USER_AGENT = "origin-ca-issuer/1.0"
RAY_ID_HEADER = "cf-ray"
SERVICE_KEY_HEADER = "X-Auth-User-Service-Key"

# Layout produced by Go's time.Time.String(), e.g. "2020-12-25 06:27:00 +0000 UTC".
_GO_TIME = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d{1,9}))?"
    r" (?P<offset>[+-]\d{4})(?: [A-Za-z0-9+-]+)?(?: m=[+-][\d.]+)?$"
)
_RFC3339 = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d{1,9}))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


def _with_fraction(value: datetime, frac: Optional[str]) -> datetime:
    if not frac:
        return value
    return value + timedelta(microseconds=int(frac[:6].ljust(6, "0")))


def parse_expires_on(value: str) -> datetime:
    """
    Parse ``expires_on`` from a signing response.

    The API has used both Go's default time format and RFC3339; the Go format is
    tried first.
    """
    match = _GO_TIME.match(value)
    if match:
        parsed = datetime.strptime(
            f"{match['base']} {match['offset']}", "%Y-%m-%d %H:%M:%S %z"
        )
        return _with_fraction(parsed, match["frac"]).astimezone(timezone.utc)

    match = _RFC3339.match(value)
    if match:
        offset = match["offset"].upper().replace("Z", "+00:00")
        parsed = datetime.fromisoformat(f"{match['base'].replace('t', 'T')}{offset}")
        return _with_fraction(parsed, match["frac"]).astimezone(timezone.utc)

    raise ResponseDecodeError(f"unable to parse expires_on timestamp {value!r}")


@dataclass
class SignRequest:
    hostnames: List[str]
    csr: str
    requested_validity: int
    request_type: str

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class SignResponse:
    id: str
    certificate: str
    hostnames: List[str]
    expires_on: datetime
    request_type: str
    requested_validity: int
    csr: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignResponse":
        try:
            return cls(
                id=data["id"],
                certificate=data["certificate"],
                hostnames=list(data.get("hostnames") or []),
                expires_on=parse_expires_on(data["expires_on"]),
                request_type=data.get("request_type", ""),
                requested_validity=int(data.get("requested_validity", 0)),
                csr=data.get("csr", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ResponseDecodeError(f"malformed signing response: {e}") from e


def default_session() -> requests.Session:
    # Only connection failures and 429 are retried: a POST that reached the API
    # may already have issued a certificate.
    retry_strategy = Retry(
        total=3,
        connect=3,
        read=0,
        backoff_factor=1,
        status_forcelist=[429],
        allowed_methods=["POST"],
        raise_on_status=False,
    )

    session = requests.Session()
    session.mount("https://", HTTPAdapter(max_retries=retry_strategy))
    session.mount("http://", HTTPAdapter(max_retries=retry_strategy))
    session.headers.update({"User-Agent": USER_AGENT})
    return session


class Client:
    """Authenticated client for the Cloudflare Origin CA API."""

    def __init__(
        self,
        auth_headers: Dict[str, str],
        session: Optional[requests.Session] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.auth_headers = dict(auth_headers)
        self.session = session or default_session()
        self.endpoint = endpoint
        self.timeout = timeout

    async def sign(
        self, request: SignRequest, timeout: Optional[float] = None
    ) -> SignResponse:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None, self._sign, request, timeout or self.timeout
        )

    def _sign(self, request: SignRequest, timeout: float) -> SignResponse:
        headers = {"Content-Type": "application/json", **self.auth_headers}

        try:
            response = self.session.post(
                self.endpoint, json=request.to_dict(), headers=headers, timeout=timeout
            )
        except requests.RequestException as e:
            logger.error(f"Signing request to {self.endpoint} failed: {e}")
            raise TransportError(f"request to Cloudflare API failed: {e}") from e

        ray_id = response.headers.get(RAY_ID_HEADER, "")

        try:
            envelope = response.json()
        except ValueError as e:
            raise TransportError(
                f"unexpected response from Cloudflare API status={response.status_code} "
                f"ray_id={ray_id}",
                status_code=response.status_code,
            ) from e

        if not isinstance(envelope, dict):
            raise TransportError(
                f"unexpected response body from Cloudflare API ray_id={ray_id}",
                status_code=response.status_code,
            )

        errors = envelope.get("errors") or []
        if not envelope.get("success", False) and errors:
            if not isinstance(errors, list) or not isinstance(errors[0], dict):
                raise TransportError(
                    f"malformed error list from Cloudflare API ray_id={ray_id}",
                    status_code=response.status_code,
                )
            first = errors[0]
            err = APIError(
                code=first.get("code", 0),
                message=first.get("message", ""),
                ray_id=ray_id,
                errors=errors,
            )
            logger.error(f"{err} ({len(errors)} error(s) returned)")
            raise err

        if not 200 <= response.status_code < 300 or not envelope.get("success", False):
            raise TransportError(
                f"Cloudflare API request failed status={response.status_code} "
                f"ray_id={ray_id}",
                status_code=response.status_code,
            )

        return SignResponse.from_dict(envelope.get("result") or {})


@dataclass(frozen=True)
class ClientBuilder:
    """
    Immutable client configuration.

    Each ``with_*`` call returns a new builder, so a shared base builder can be
    specialised per reconciliation without any cross-talk. A service key and a
    token are mutually exclusive; setting one clears the other.
    """

    service_key: Optional[bytes] = field(default=None, repr=False)
    token: Optional[bytes] = field(default=None, repr=False)
    session: Optional[requests.Session] = None
    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = DEFAULT_TIMEOUT

    def with_service_key(self, key: bytes) -> "ClientBuilder":
        return dataclasses.replace(self, service_key=key, token=None)

    def with_token(self, token: bytes) -> "ClientBuilder":
        return dataclasses.replace(self, token=token, service_key=None)

    def with_http_client(self, session: requests.Session) -> "ClientBuilder":
        return dataclasses.replace(self, session=session)

    def with_endpoint(self, url: str) -> "ClientBuilder":
        try:
            endpoint = SecurityValidator.validate_url(url)
        except ValueError as e:
            raise ClientConfigurationError(f"invalid endpoint {url!r}: {e}") from e
        return dataclasses.replace(self, endpoint=endpoint)

    def with_timeout(self, seconds: float) -> "ClientBuilder":
        return dataclasses.replace(self, timeout=seconds)

    def build(self) -> Client:
        try:
            if self.service_key is not None:
                headers = {SERVICE_KEY_HEADER: self.service_key.decode("utf-8").strip()}
            elif self.token is not None:
                token = self.token.decode("utf-8").strip()
                headers = {"Authorization": f"Bearer {token}"}
            else:
                raise ClientConfigurationError(
                    "either a service key or an API token must be configured"
                )
        except UnicodeDecodeError as e:
            raise ClientConfigurationError("credential is not valid UTF-8") from e

        return Client(
            headers, session=self.session, endpoint=self.endpoint, timeout=self.timeout
        )
