"""ioTec identity and collections API clients."""
import asyncio
from typing import Any, Awaitable, Callable

import httpx

from talentpay.config import Settings
from talentpay.core.exceptions import AuthError, ProviderError
from talentpay.core.logging import app_logger


class TokenProvider:
    """Obtains OAuth client-credentials access tokens from ioTec's identity service."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        timeout_seconds: float,
    ):
        """
        Initialize the token provider.

        Args:
            client_id: ioTec client id
            client_secret: ioTec client secret
            token_url: Identity endpoint URL
            timeout_seconds: Request timeout in seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenProvider":
        return cls(
            client_id=settings.IOTEC_CLIENT_ID,
            client_secret=settings.IOTEC_CLIENT_SECRET,
            token_url=settings.IOTEC_TOKEN_URL,
            timeout_seconds=settings.IOTEC_TIMEOUT_SECONDS,
        )

    async def get_access_token(self) -> str:
        """
        Fetch a fresh access token. Tokens are not cached.

        Raises:
            AuthError: credentials missing, endpoint unreachable, or a non-2xx answer
        """
        if not self.client_id or not self.client_secret:
            raise AuthError("ioTec credentials not configured")

        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.token_url, data=form)
        except httpx.TimeoutException as e:
            app_logger.error(f"ioTec token request timed out: {e}")
            raise AuthError("ioTec token request timed out", body=str(e)) from e
        except httpx.RequestError as e:
            app_logger.error(f"Failed to connect to ioTec identity service: {e}")
            raise AuthError("Failed to connect to ioTec identity service", body=str(e)) from e

        if not response.is_success:
            app_logger.error(
                f"ioTec token error {response.status_code}: {response.text}"
            )
            raise AuthError(
                f"ioTec token error {response.status_code}",
                http_status=response.status_code,
                body=response.text,
            )

        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError) as e:
            raise AuthError(
                "Invalid response from ioTec identity service",
                http_status=response.status_code,
                body=response.text,
            ) from e
        return token


class IotecCollectionsClient:
    """Client for the ioTec collections (mobile-money pull) API."""

    def __init__(
        self,
        base_url: str,
        wallet_id: str,
        timeout_seconds: float,
        status_attempts: int = 1,
        retry_delay_seconds: float = 1.0,
        max_retry_delay_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: Collections API root, e.g. ``https://pay.iotec.io/api``
            wallet_id: Wallet the collected funds land in
            timeout_seconds: Per-request timeout
            status_attempts: Tries per status query; 404 and 5xx answers are retried
            retry_delay_seconds: First backoff delay, doubled after each retry
            max_retry_delay_seconds: Backoff ceiling
            sleep: Awaitable used between retries
        """
        self.base_url = base_url.rstrip("/")
        self.wallet_id = wallet_id
        self.timeout_seconds = timeout_seconds
        self.status_attempts = max(1, status_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.max_retry_delay_seconds = max_retry_delay_seconds
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "IotecCollectionsClient":
        return cls(
            base_url=settings.IOTEC_BASE_URL,
            wallet_id=settings.IOTEC_WALLET_ID,
            timeout_seconds=settings.IOTEC_TIMEOUT_SECONDS,
            status_attempts=settings.IOTEC_STATUS_MAX_ATTEMPTS,
            retry_delay_seconds=settings.IOTEC_STATUS_RETRY_DELAY_SECONDS,
            max_retry_delay_seconds=settings.IOTEC_STATUS_MAX_RETRY_DELAY_SECONDS,
        )

    async def collect(
        self,
        access_token: str,
        *,
        amount: float,
        currency: str,
        external_id: str,
        payer: str,
        payer_note: str,
        payee_note: str,
    ) -> dict[str, Any]:
        """
        Submit a collection request asking the payer's wallet for funds.

        Returns:
            The provider's JSON response

        Raises:
            ProviderError: rejected (non-2xx) or unreachable
        """
        payload = {
            "walletId": self.wallet_id,
            "amount": amount,
            "currency": currency,
            "externalId": external_id,
            "payer": payer,
            "payerNote": payer_note,
            "payeeNote": payee_note,
        }
        return await self._request(
            "POST", "/collections/collect", access_token, json=payload
        )

    async def get_collection_status(
        self, access_token: str, collection_id: str
    ) -> dict[str, Any]:
        """
        Query the provider for the current state of a collection.

        A freshly submitted collection can answer 404 for a moment, so 404,
        5xx and connection failures are retried with exponential backoff.

        Raises:
            ProviderError: non-2xx (provider_status 404 for unknown ids) or unreachable
        """
        delay = self.retry_delay_seconds
        attempt = 1
        while True:
            try:
                return await self._request(
                    "GET", f"/collections/{collection_id}", access_token
                )
            except ProviderError as e:
                if attempt >= self.status_attempts or not _worth_retrying(e):
                    raise
                app_logger.warning(
                    f"ioTec status query for {collection_id} failed "
                    f"({e.provider_status or e.message}), retry {attempt} in {delay}s"
                )
                await self.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay_seconds)
                attempt += 1

    async def check_balance(
        self, access_token: str, phone: str, currency: str
    ) -> dict[str, Any]:
        """
        Ask the payer's mobile-money provider for the wallet balance.

        Raises:
            ProviderError: non-2xx or unreachable
        """
        payload = {"phone": phone, "walletId": self.wallet_id, "currency": currency}
        return await self._request(
            "POST", "/v2/customers/balance", access_token, json=payload
        )

    async def _request(
        self, method: str, path: str, access_token: str, **kwargs: Any
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError("ioTec request timed out", body=str(e)) from e
        except httpx.RequestError as e:
            raise ProviderError(f"Failed to connect to ioTec: {e}", body=str(e)) from e

        body = self._parse_body(response)
        if not response.is_success:
            message = "Mobile Money collection failed"
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
            raise ProviderError(message, provider_status=response.status_code, body=body)

        if not isinstance(body, dict):
            raise ProviderError(
                "Invalid response from ioTec",
                provider_status=response.status_code,
                body=body,
            )
        return body

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text


def _worth_retrying(error: ProviderError) -> bool:
    # Unreachable, not yet visible, or a provider-side fault
    status = error.provider_status
    return status is None or status == 404 or status >= 500
