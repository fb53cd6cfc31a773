"""HTTP client for the external generation worker (workflow engine webhook)."""

import logging
from typing import Any

import httpx

from gictor.config import Settings
from gictor.exceptions import WorkerTimeoutError, WorkerUnavailableError

logger = logging.getLogger(__name__)


class WorkerClient:
    """Forwards accepted generation requests to the worker.

    Every request carries the shared secret in the `x-api-key` header. The
    worker answers with an acknowledgement; the actual result arrives later
    through the status callback.
    """

    def __init__(
        self,
        webhook_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerClient":
        return cls(
            webhook_url=settings.worker_webhook_url,
            api_key=settings.worker_api_key,
            timeout_seconds=settings.worker_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url and self._api_key)

    async def forward(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST `{type, payload}` to the worker and return its acknowledgement.

        Raises:
            WorkerTimeoutError: no response within the timeout
            WorkerUnavailableError: transport failure or non-2xx response
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    headers={
                        "Content-Type": "application/json",
                        "x-api-key": self._api_key,
                    },
                    json={"type": kind, "payload": payload},
                )
        except httpx.TimeoutException as e:
            logger.error(f"Worker timed out after {self._timeout}s for {kind}")
            raise WorkerTimeoutError() from e
        except httpx.HTTPError as e:
            logger.error(f"Worker request failed for {kind}: {e}")
            raise WorkerUnavailableError() from e

        if not response.is_success:
            logger.error(f"Worker error: {response.status_code} {response.text[:500]}")
            raise WorkerUnavailableError(upstream_status=response.status_code)

        return self._parse_ack(response)

    @staticmethod
    def _parse_ack(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.info(f"Worker returned non-JSON response: {response.text[:100]}")
            return {"message": "Generation started"}
        if not isinstance(data, dict):
            return {"message": "Generation started", "data": data}
        return data
