"""Error taxonomy for the payment lifecycle.

Each error carries the HTTP status it maps to; the handlers registered in
``talentpay.main`` turn them into ``{"success": false, "message": ...}``
responses.
"""
from typing import Any

from fastapi import status


class PaymentError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(PaymentError):
    """Bad input. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class AuthError(PaymentError):
    """The provider's identity endpoint refused or could not be reached."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str, http_status: int | None = None, body: str = ""):
        super().__init__(message)
        self.http_status = http_status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "message": "Payment gateway temporarily unavailable. Please try again later.",
        }


class ProviderError(PaymentError):
    """The payment network rejected the request or was unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        provider_status: int | None = None,
        body: Any = None,
        transaction_id: str | None = None,
    ):
        super().__init__(message)
        self.provider_status = provider_status
        self.body = body
        self.transaction_id = transaction_id

    def to_dict(self) -> dict[str, Any]:
        payload = {**super().to_dict(), "error": self.body}
        if self.transaction_id:
            payload["transactionId"] = self.transaction_id
        return payload


class NotFoundError(PaymentError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, transaction_id: str, message: str = "Payment not found"):
        super().__init__(message)
        self.transaction_id = transaction_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "transactionId": self.transaction_id}


class StoreError(PaymentError):
    """Persistence failure."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class RateLimitError(PaymentError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
