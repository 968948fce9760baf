"""HTTP client for the remote reconciliation service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

import httpx
from pydantic import ValidationError

from .exceptions import BatchTransportFailure, ConnectivityFailure
from .models import SyncQueueEntity
from .schemas import BatchSyncRequest, BatchSyncResponse, SyncQueueItemOut

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class RemoteReconcilerClient:
    """
    Talks to ``GET {base}/health`` and ``POST {base}/batch``.

    Every request carries a timeout; a timeout surfaces as ConnectivityFailure
    from the probe and as BatchTransportFailure from a submission.

    Args:
        base_url: Service root, e.g. ``http://localhost:3000/api``.
        request_timeout: Seconds allowed for a batch request.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._client = httpx.Client(base_url=self._base_url, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._client.close()

    def check_health(self, timeout: float) -> None:
        """Raise ConnectivityFailure unless /health answers 2xx within ``timeout``."""
        try:
            response = self._client.get("/health", timeout=timeout)
        except httpx.HTTPError as e:
            raise ConnectivityFailure(f"Health check failed: {e}") from e
        if not response.is_success:
            raise ConnectivityFailure(f"Health check returned HTTP {response.status_code}")

    def submit_batch(
        self,
        items: Sequence[SyncQueueEntity],
        client_timestamp: Optional[datetime] = None,
    ) -> BatchSyncResponse:
        """
        Send the whole batch in one request and return the parsed verdicts.

        Raises BatchTransportFailure on network errors, timeouts, non-2xx
        replies and bodies that are not a valid batch response.
        """
        payload = BatchSyncRequest(
            items=[SyncQueueItemOut(**item) for item in items],
            client_timestamp=client_timestamp or datetime.now(timezone.utc),
        )
        try:
            response = self._client.post(
                "/batch",
                json=payload.model_dump(mode="json"),
                timeout=self._request_timeout,
            )
        except httpx.TimeoutException as e:
            raise BatchTransportFailure("Batch request timed out") from e
        except httpx.HTTPError as e:
            raise BatchTransportFailure(f"Batch request failed: {e}") from e

        if not response.is_success:
            raise BatchTransportFailure(f"Batch request returned HTTP {response.status_code}")

        try:
            return BatchSyncResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.debug("Malformed batch response: %s", response.text[:500])
            raise BatchTransportFailure("Malformed batch response") from e
