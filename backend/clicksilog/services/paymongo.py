# Overview: Payment provider clients (PayMongo over HTTP, and an in-process mock).

"""
Payment Providers

The provider is chosen once when the app is composed (see create_app) and
stored on app.extensions["payment_provider"]; services never branch on
mock-vs-real themselves.

PayMongo amounts are integer minor units (centavos). Providers accept and
return Decimal pesos and convert at this boundary.

QR PH FLOW (three calls):
1. POST /payment_intents         (payment_method_allowed=["qrph"])
2. POST /payment_methods         (type="qrph", billing details)
3. POST /payment_intents/{id}/attach
   -> next_action.code.image_url holds the base64 QR image
"""

from __future__ import annotations

import base64
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx
from flask import current_app

from ..money import from_minor, to_minor
from clicksilog.time_utils import utcnow


logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """
    Raised when the provider rejects or fails a request.

    status_code is the provider's HTTP status (None for transport errors);
    detail is errors[0].detail from the provider body when present.
    """

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None, errors=None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.errors = errors


@dataclass
class IntentResult:
    payment_intent_id: str
    client_key: str | None = None
    status: str = "awaiting_payment_method"
    amount: Decimal | None = None


@dataclass
class QrPaymentResult:
    payment_intent_id: str
    payment_method_id: str
    qr_image_url: str
    expires_at: datetime


@dataclass
class CheckoutSessionResult:
    checkout_session_id: str
    checkout_url: str
    payment_intent_id: str | None = None


@dataclass
class IntentStatus:
    payment_intent_id: str
    status: str  # awaiting_payment_method, awaiting_next_action, processing, succeeded, ...
    amount: Decimal
    payment_id: str | None = None


class PaymentProvider:
    """Interface shared by the PayMongo client and the mock."""

    def create_payment_intent(self, *, amount: Decimal, currency: str, description: str,
                              metadata: dict, methods: list[str]) -> IntentResult:
        raise NotImplementedError

    def create_qr_payment(self, *, amount: Decimal, currency: str, description: str,
                          metadata: dict, billing: dict, ttl_minutes: int) -> QrPaymentResult:
        raise NotImplementedError

    def create_checkout_session(self, *, amount: Decimal, currency: str, description: str,
                                metadata: dict, redirect_url: str) -> CheckoutSessionResult:
        raise NotImplementedError

    def retrieve_payment_intent(self, payment_intent_id: str) -> IntentStatus:
        raise NotImplementedError


# =============================================================================
# PAYMONGO
# =============================================================================

def extract_error_detail(body: Any) -> str | None:
    """PayMongo error bodies look like {"errors": [{"code": ..., "detail": ...}]}."""
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("detail")
    return body.get("error") if isinstance(body.get("error"), str) else None


class PayMongoClient(PaymentProvider):
    """
    PayMongo REST client. Authenticates with HTTP Basic using the secret key
    as the username and an empty password; the key never leaves the server.
    """

    def __init__(self, secret_key: str, base_url: str = "https://api.paymongo.com/v1",
                 timeout_s: float = 15.0, transport: httpx.BaseTransport | None = None):
        self.base = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout_s = timeout_s
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        token = base64.b64encode(f"{self.secret_key}:".encode()).decode()
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, attributes: dict | None = None) -> dict:
        if not self.secret_key:
            raise PaymentProviderError("Payment service temporarily unavailable")

        url = f"{self.base}{path}"
        payload = {"data": {"attributes": attributes}} if attributes is not None else None
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as c:
                r = c.request(method, url, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            logger.error("PayMongo %s %s transport error: %s", method, path, exc)
            raise PaymentProviderError("Payment provider unreachable") from exc

        try:
            body = r.json()
        except ValueError:
            body = None

        if r.status_code >= 400:
            detail = extract_error_detail(body)
            logger.error("PayMongo %s %s failed (%s): %s", method, path, r.status_code, detail)
            raise PaymentProviderError(
                _describe_failure(r.status_code, detail),
                status_code=r.status_code,
                detail=detail,
                errors=(body or {}).get("errors") if isinstance(body, dict) else None,
            )

        data = (body or {}).get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("PayMongo %s %s returned no resource id", method, path)
            raise PaymentProviderError("Invalid response from PayMongo API", status_code=r.status_code)
        return data

    def create_payment_intent(self, *, amount, currency, description, metadata, methods):
        data = self._request("POST", "/payment_intents", {
            "amount": to_minor(amount),
            "currency": currency,
            "payment_method_allowed": methods,
            "description": description,
            "metadata": metadata,
        })
        attrs = data.get("attributes") or {}
        return IntentResult(
            payment_intent_id=data["id"],
            client_key=attrs.get("client_key"),
            status=attrs.get("status", "awaiting_payment_method"),
            amount=from_minor(attrs["amount"]) if attrs.get("amount") is not None else amount,
        )

    def create_qr_payment(self, *, amount, currency, description, metadata, billing, ttl_minutes):
        intent = self.create_payment_intent(
            amount=amount, currency=currency, description=description,
            metadata=metadata, methods=["qrph"],
        )

        billing_attrs = {k: v for k, v in billing.items() if v}
        method = self._request("POST", "/payment_methods", {"type": "qrph", "billing": billing_attrs})

        attached = self._request(
            "POST",
            f"/payment_intents/{intent.payment_intent_id}/attach",
            {"payment_method": method["id"]},
        )
        next_action = (attached.get("attributes") or {}).get("next_action") or {}
        qr_image_url = (next_action.get("code") or {}).get("image_url")
        if not qr_image_url:
            raise PaymentProviderError(
                "No QR code received from PayMongo. Please check your PayMongo account settings."
            )

        logger.info("PayMongo QR PH created for intent %s", attached["id"])
        return QrPaymentResult(
            payment_intent_id=attached["id"],
            payment_method_id=method["id"],
            qr_image_url=qr_image_url,
            expires_at=utcnow() + timedelta(minutes=ttl_minutes),
        )

    def create_checkout_session(self, *, amount, currency, description, metadata, redirect_url):
        data = self._request("POST", "/checkout_sessions", {
            "line_items": [{
                "currency": currency,
                "amount": to_minor(amount),
                "name": description,
                "quantity": 1,
            }],
            "payment_method_types": ["gcash", "qrph"],
            "success_url": redirect_url,
            "cancel_url": redirect_url,
            "description": description,
            "metadata": metadata,
        })
        attrs = data.get("attributes") or {}
        intent = attrs.get("payment_intent") or {}
        return CheckoutSessionResult(
            checkout_session_id=data["id"],
            checkout_url=attrs.get("checkout_url") or "",
            payment_intent_id=intent.get("id") if isinstance(intent, dict) else None,
        )

    def retrieve_payment_intent(self, payment_intent_id):
        data = self._request("GET", f"/payment_intents/{payment_intent_id}")
        attrs = data.get("attributes") or {}
        amount = from_minor(attrs.get("amount") or 0)
        payment_id = None

        # A succeeded intent carries its payments; prefer the payment's own amount
        payments = attrs.get("payments") or []
        payment = attrs.get("payment") or (payments[-1] if payments else None)
        if isinstance(payment, dict):
            payment_id = payment.get("id")
            payment_amount = (payment.get("attributes") or {}).get("amount")
            if payment_amount is not None:
                amount = from_minor(payment_amount)

        return IntentStatus(
            payment_intent_id=data["id"],
            status=attrs.get("status", "unknown"),
            amount=amount,
            payment_id=payment_id,
        )


def _describe_failure(status_code: int, detail: str | None) -> str:
    if status_code == 401:
        return "Authentication failed. Please check your API keys."
    if status_code == 400:
        return f"Invalid request: {detail or 'Invalid request'}"
    if status_code >= 500:
        return "PayMongo server error. Please try again later."
    return detail or "Payment request failed"


# =============================================================================
# MOCK
# =============================================================================

class MockPaymentProvider(PaymentProvider):
    """
    Deterministic in-process provider for development and tests.

    intent_status controls what retrieve_payment_intent reports; fail_with
    makes every call raise PaymentProviderError with that message.
    """

    def __init__(self, intent_status: str = "awaiting_next_action", fail_with: str | None = None):
        self.intent_status = intent_status
        self.fail_with = fail_with
        self.intents: dict[str, dict] = {}
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_mock{next(self._ids):06d}"

    def _check(self):
        if self.fail_with:
            raise PaymentProviderError(self.fail_with, status_code=400, detail=self.fail_with)

    def create_payment_intent(self, *, amount, currency, description, metadata, methods):
        self._check()
        intent_id = self._next_id("pi")
        self.intents[intent_id] = {"amount": amount, "currency": currency, "metadata": metadata}
        return IntentResult(
            payment_intent_id=intent_id,
            client_key=f"{intent_id}_client_key",
            amount=amount,
        )

    def create_qr_payment(self, *, amount, currency, description, metadata, billing, ttl_minutes):
        intent = self.create_payment_intent(
            amount=amount, currency=currency, description=description,
            metadata=metadata, methods=["qrph"],
        )
        return QrPaymentResult(
            payment_intent_id=intent.payment_intent_id,
            payment_method_id=self._next_id("pm"),
            qr_image_url="data:image/png;base64,bW9jay1xcg==",
            expires_at=utcnow() + timedelta(minutes=ttl_minutes),
        )

    def create_checkout_session(self, *, amount, currency, description, metadata, redirect_url):
        self._check()
        intent = self.create_payment_intent(
            amount=amount, currency=currency, description=description,
            metadata=metadata, methods=["gcash", "qrph"],
        )
        session_id = self._next_id("cs")
        return CheckoutSessionResult(
            checkout_session_id=session_id,
            checkout_url=f"https://checkout.mock/{session_id}",
            payment_intent_id=intent.payment_intent_id,
        )

    def retrieve_payment_intent(self, payment_intent_id):
        self._check()
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise PaymentProviderError("Payment intent not found", status_code=404)
        succeeded = self.intent_status == "succeeded"
        return IntentStatus(
            payment_intent_id=payment_intent_id,
            status=self.intent_status,
            amount=intent["amount"],
            payment_id=f"pay_{payment_intent_id}" if succeeded else None,
        )


# =============================================================================
# COMPOSITION
# =============================================================================

def build_provider(config) -> PaymentProvider:
    """Pick the provider once from configuration."""
    if config.get("USE_MOCK_PAYMENTS"):
        logger.info("Using mock payment provider")
        return MockPaymentProvider()
    return PayMongoClient(
        secret_key=config.get("PAYMONGO_SECRET_KEY", ""),
        base_url=config.get("PAYMONGO_API_URL", "https://api.paymongo.com/v1"),
        timeout_s=config.get("PAYMONGO_TIMEOUT_SECONDS", 15.0),
    )


def get_provider() -> PaymentProvider:
    return current_app.extensions["payment_provider"]
