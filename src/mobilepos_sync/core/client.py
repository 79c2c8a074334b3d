"""HTTP transport to the Mobile POS back office API.

``PosApiClient`` is the production ``RemoteTransport``: it pushes single
records to the per-type sync endpoints, probes ``/api/health`` and pulls
server-side changes.  Calls are blocking; the sync engine runs them in
worker threads, so every thread gets its own ``requests.Session``.
"""

import logging
import threading
from typing import Any, Protocol

import requests
from pydantic import BaseModel

from ..config import Config
from ..storage.models import Record

logger = logging.getLogger(__name__)

# Per-type upload endpoints.  Unknown types go to the generic endpoint.
ENDPOINTS: dict[str, str] = {
    "product": "/api/products/sync",
    "customer": "/api/customers/sync",
    "sale": "/api/sales/sync",
    "purchase": "/api/purchases/sync",
    "return": "/api/returns/sync",
    "cashbook": "/api/cashbook/sync",
}
DEFAULT_ENDPOINT = "/api/sync"
HEALTH_ENDPOINT = "/api/health"
CHANGES_ENDPOINT = "/api/sync/changes"


class TransportError(Exception):
    """A remote call failed (network error, HTTP error or bad response)."""


class RemoteRejectedError(TransportError):
    """The server answered but did not accept the record."""


class PullBatch(BaseModel):
    """Server-side changes returned by one pull.

    Attributes:
        records: Raw remote records in the persisted JSON shape.
        checkpoint: Opaque marker to pass as ``since`` on the next pull.
    """

    records: list[Any] = []
    checkpoint: str | None = None

    model_config = {"frozen": True}


class RemoteTransport(Protocol):
    """What the sync engine needs from the remote side."""

    def push_record(self, record: Record) -> None:
        """Transmit one record.  Returns on success, raises on failure."""
        ...  # pragma: no cover

    def check_health(self) -> bool:
        """Return True if the server is reachable.  Must not raise."""
        ...  # pragma: no cover

    def pull_changes(self, since: str | None) -> PullBatch:
        """Return records changed on the server after *since*."""
        ...  # pragma: no cover


def endpoint_for_type(record_type: str) -> str:
    return ENDPOINTS.get(record_type, DEFAULT_ENDPOINT)


class PosApiClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self.base_url = config.api_url.rstrip("/")

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = self._create_session()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        session.headers["Content-Type"] = "application/json"
        if self.config.auth_token:
            session.headers["Authorization"] = (
                f"Bearer {self.config.auth_token}"
            )
        return session

    def _request(
        self, method: str, path: str, timeout: float, **kwargs: Any
    ) -> Any:
        """
        Make a request against the API and return the decoded JSON body.

        An empty body decodes to None.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._get_session().request(
                method, url, timeout=timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason}"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} {path} returned invalid JSON"
            ) from exc

    def push_record(self, record: Record) -> None:
        """
        Upload one record to the endpoint for its type.

        Raises:
            TransportError: On network or HTTP failure.
            RemoteRejectedError: If the response lists accepted ids and
                this record is not among them.
        """
        payload = {
            "items": [
                {
                    "localId": record.id,
                    "type": record.type,
                    "data": record.data,
                    "createdAt": record.created_at.isoformat(),
                    "updatedAt": record.updated_at.isoformat(),
                }
            ]
        }
        body = self._request(
            "POST",
            endpoint_for_type(record.type),
            self.config.transmit_timeout,
            json=payload,
        )

        if isinstance(body, dict) and isinstance(body.get("syncedIds"), list):
            if record.id not in body["syncedIds"]:
                raise RemoteRejectedError(
                    f"server did not accept {record.type} {record.id}"
                )

    def check_health(self) -> bool:
        """
        Probe the health endpoint.  Never raises.
        """
        try:
            self._request(
                "GET", HEALTH_ENDPOINT, self.config.probe_timeout
            )
        except TransportError as exc:
            logger.debug("Health probe failed: %s", exc)
            return False
        return True

    def pull_changes(self, since: str | None) -> PullBatch:
        """
        Fetch records changed on the server after the *since* checkpoint.

        Raises:
            TransportError: On network/HTTP failure or a malformed body.
        """
        params = {"since": since} if since else {}
        body = self._request(
            "GET",
            CHANGES_ENDPOINT,
            self.config.transmit_timeout,
            params=params,
        )
        if body is None:
            return PullBatch(checkpoint=since)
        if not isinstance(body, dict) or not isinstance(
            body.get("records", []), list
        ):
            raise TransportError(
                f"GET {CHANGES_ENDPOINT} returned a malformed body"
            )
        return PullBatch(
            records=body.get("records", []),
            checkpoint=body.get("checkpoint", since),
        )

    def close(self) -> None:
        """Close every session opened by any thread."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
