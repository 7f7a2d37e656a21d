"""
Upstream provider plumbing shared by the A2E, OpenAI and RunComfy clients.

A client checks its credential before any network traffic, sends the request
with a bearer header and turns non-2xx responses into ProviderHTTPError.
Provider-specific envelopes are unwrapped by the subclasses.
"""

import logging
from typing import Any

import httpx

from aktion.errors import AppError

logger = logging.getLogger(__name__)

# Upstream bodies are echoed back to the caller truncated to this length
ERROR_BODY_LIMIT = 200


class ProviderError(AppError):
    status_code = 500

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class ProviderNotConfigured(ProviderError):
    def __init__(self, provider: str):
        super().__init__(provider, f"{provider} API key not configured")


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(
            provider, f"{provider} API error: {status} - {body[:ERROR_BODY_LIMIT]}"
        )


class ProviderEnvelopeError(ProviderError):
    def __init__(self, provider: str, upstream_message: str | None):
        self.upstream_message = upstream_message or "Unknown error"
        super().__init__(
            provider, f"{provider} API returned an error: {self.upstream_message}"
        )


class ProviderUnavailable(ProviderError):
    """The request never got an HTTP response (timeout, connection error)."""


class ProviderTaskFailed(ProviderError):
    pass


# Errors a status poll shrugs off; the next attempt may well succeed
TRANSIENT_POLL_ERRORS = (ProviderUnavailable, ProviderHTTPError, ProviderEnvelopeError)


class ProviderTimeout(ProviderError):
    """A long-running upstream task did not finish within the polling budget."""

    status_code = 408


class ProviderClient:
    name = "Provider"

    def __init__(self, http: httpx.AsyncClient, api_key: str, base_url: str):
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ProviderNotConfigured(self.name)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> httpx.Response:
        self.ensure_configured()

        try:
            response = await self.http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=self._headers(),
            )
        except httpx.TimeoutException:
            logger.error(f"{self.name} {method} {path} timed out")
            raise ProviderUnavailable(self.name, f"{self.name} API request timed out")
        except httpx.RequestError as e:
            logger.error(f"{self.name} {method} {path} failed: {e}")
            raise ProviderUnavailable(self.name, f"{self.name} API unreachable")

        logger.info(f"{self.name} {method} {path} -> {response.status_code}")

        if not response.is_success:
            logger.error(f"{self.name} error body: {response.text[:500]}")
            raise ProviderHTTPError(self.name, response.status_code, response.text)

        return response

    @staticmethod
    def _json(response: httpx.Response, provider: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise ProviderHTTPError(provider, response.status_code, response.text)
