"""Shared plumbing for outbound call providers.

Each provider client places calls and verifies the signatures of the
webhooks that provider sends back. The dispatch loop only depends on the
``CallProviderClient`` protocol, so either provider can place calls.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import Settings, get_settings
from app.models.call_log import CallProvider
from app.utils.signing import verify_signature

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Outbound call creation failed (network, auth, rate limit, timeout)."""

    def __init__(self, provider: CallProvider, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class SignatureError(Exception):
    """Inbound webhook failed authentication."""

    def __init__(self, provider: CallProvider) -> None:
        super().__init__(f"Invalid {provider.value} webhook signature")
        self.provider = provider


@dataclass(frozen=True)
class CallResult:
    """Outcome of a successful call-creation request."""

    provider: CallProvider
    external_call_id: str
    provider_status: str


class CallProviderClient(Protocol):
    """What the dispatch loop needs from a provider."""

    provider: CallProvider

    async def create_call(self, phone_number: str, message: str, reminder_id: str) -> CallResult:
        ...

    async def close(self) -> None:
        ...


class BaseProviderClient:
    """HTTP client lifecycle, retries and signature checks shared by providers.

    Subclasses set ``provider`` and implement ``_client_options`` and
    ``create_call``.
    """

    provider: CallProvider

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _client_options(self) -> dict[str, Any]:
        """Return base_url/auth/headers for the underlying ``httpx.AsyncClient``."""
        raise NotImplementedError

    @property
    def webhook_secret(self) -> str:
        raise NotImplementedError

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._settings.provider_timeout_seconds,
                transport=self._transport,
                **self._client_options(),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # Only retry when the connection was never established: the provider
    # cannot have placed a call yet.
    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        response = await client.post(url, **kwargs)
        response.raise_for_status()
        return response

    async def _request_call(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """POST a call-creation request and translate failures to ``ProviderError``."""
        try:
            response = await self._post(url, **kwargs)
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{self.provider.value} API error: {e.response.status_code} - {e.response.text}"
            )
            raise ProviderError(
                self.provider, f"Failed to create call: {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider.value} request timed out: {e}")
            raise ProviderError(self.provider, "Call creation timed out") from e
        except httpx.RequestError as e:
            logger.error(f"{self.provider.value} connection error: {e}")
            raise ProviderError(self.provider, f"Connection error: {e}") from e
        except ValueError as e:
            raise ProviderError(self.provider, "Provider returned a non-JSON body") from e

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        """Verify an inbound webhook signed by this provider.

        In development mode, verification is skipped if no secret is configured.
        """
        if not self.webhook_secret:
            if self._settings.is_development:
                logger.warning(
                    f"{self.provider.value} webhook secret not configured, "
                    "skipping signature verification (dev mode)"
                )
                return True
            logger.error(f"{self.provider.value} webhook secret not configured")
            return False

        if not signature:
            logger.warning(f"{self.provider.value} webhook request missing signature header")
            return False

        return verify_signature(self.webhook_secret, payload, signature)


def build_provider_client(
    provider: CallProvider | str,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseProviderClient:
    """Create a client for ``provider``."""
    # Imported here to avoid a cycle: both modules subclass BaseProviderClient.
    from app.services.telephony import TelephonyClient
    from app.services.voice_ai import VoiceAIClient

    provider = CallProvider(provider)
    if provider == CallProvider.TELEPHONY:
        return TelephonyClient(settings=settings, transport=transport)
    return VoiceAIClient(settings=settings, transport=transport)


# Singleton instances, one per provider
_clients: dict[CallProvider, BaseProviderClient] = {}


def get_provider_client(provider: CallProvider | str) -> BaseProviderClient:
    """Get or create the global client for ``provider``."""
    provider = CallProvider(provider)
    if provider not in _clients:
        _clients[provider] = build_provider_client(provider)
    return _clients[provider]


def get_dispatch_client() -> BaseProviderClient:
    """Client configured to place reminder calls."""
    return get_provider_client(get_settings().dispatch_provider)


async def shutdown_provider_clients() -> None:
    """Close every global provider client."""
    for client in _clients.values():
        await client.close()
    _clients.clear()
