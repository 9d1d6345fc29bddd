"""
Shared httpx plumbing for the external collaborators (identity, notification,
document). Transient failures (transport errors, 5xx) are retried with
tenacity; anything else is returned to the caller as the response.
"""

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from orderflow.core.config import settings
from orderflow.core.logging import get_logger

logger = get_logger(__name__)


class CollaboratorUnavailable(Exception):
    """Collaborator answered with a server error"""

    def __init__(self, service: str, status_code: int):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} answered {status_code}")


class CollaboratorClient:
    """Base for HTTP clients of the external collaborator services"""

    service_name = "collaborator"

    def __init__(self, base_url: str, http_client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = http_client
        self.retry_wait = wait_exponential(multiplier=0.5, min=0.5, max=5)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.COLLABORATOR_TIMEOUT_SECONDS,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying transport errors and 5xx answers.

        Raises:
            httpx.TransportError / CollaboratorUnavailable: after the last attempt
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, CollaboratorUnavailable)),
            stop=stop_after_attempt(settings.COLLABORATOR_MAX_ATTEMPTS),
            wait=self.retry_wait,
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    logger.warning(
                        "collaborator_request_retry",
                        service=self.service_name,
                        path=path,
                        attempt=attempt_number,
                    )
                response = await self.client.request(method, path, **kwargs)
                if response.status_code >= 500:
                    raise CollaboratorUnavailable(self.service_name, response.status_code)
        return response
