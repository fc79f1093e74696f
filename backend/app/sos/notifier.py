"""
notifier.py — SMS delivery capability used by the fan-out engine.

Delivery mechanism:
    • Twilio Messages REST API over httpx (form-encoded POST, basic auth)
    • Unconfigured mode: no credentials → every send reports UNCONFIGURED
      so the alert is logged for manual notification instead

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    FanOutEngine  →  Notifier.send()  →  Twilio API  →  Carrier  →  Handset

    POST {TWILIO_API_BASE_URL}/Accounts/{SID}/Messages.json
        To=+919876543210  From=<TWILIO_PHONE_NUMBER>  Body=<message>

The notifier is built once at startup (build_notifier) and injected into
the fan-out engine. send() never raises: every transport problem comes
back as a FAILED result carrying the provider's error text.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    🚨 EMERGENCY SOS 🚨

    Priya (9876543210) is in danger and needs immediate help!

    📍 Location: https://maps.google.com/?q=12.9,77.6

    ⚠️ Please respond immediately!
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config import Settings
from backend.app.core.errors import TransportFailure

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    SENT         = "sent"
    FAILED       = "failed"
    UNCONFIGURED = "unconfigured"


@dataclass
class SendResult:
    """What the transport said about one message."""
    outcome: DeliveryOutcome
    detail: str = ""
    provider_response: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def sent(cls, **provider_response: Any) -> "SendResult":
        return cls(DeliveryOutcome.SENT, provider_response=provider_response)

    @classmethod
    def failed(cls, detail: str) -> "SendResult":
        return cls(DeliveryOutcome.FAILED, detail=detail)

    @classmethod
    def unconfigured(cls) -> "SendResult":
        return cls(DeliveryOutcome.UNCONFIGURED)


def maps_link(latitude: Optional[float], longitude: Optional[float]) -> str:
    if latitude is None or longitude is None:
        return "Location not available"
    return f"https://maps.google.com/?q={latitude},{longitude}"


def format_emergency_message(
    name: Optional[str],
    phone: Optional[str],
    latitude: Optional[float],
    longitude: Optional[float],
) -> str:
    """Render the SOS SMS body."""
    return (
        "🚨 EMERGENCY SOS 🚨\n\n"
        f"{name or 'A user'} ({phone or ''}) is in danger and needs immediate help!\n\n"
        f"📍 Location: {maps_link(latitude, longitude)}\n\n"
        "⚠️ Please respond immediately!"
    )


class Notifier:
    """Base notifier. Subclasses implement send()."""

    is_configured: bool = False

    async def send(self, to_phone: str, body: str) -> SendResult:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class UnconfiguredNotifier(Notifier):
    """Log-only mode used when SMS credentials are absent."""

    is_configured = False

    async def send(self, to_phone: str, body: str) -> SendResult:
        logger.debug("[SMS] Not configured; skipping transport for %s", to_phone)
        return SendResult.unconfigured()


class TwilioNotifier(Notifier):
    """
    Send SMS through the Twilio Messages API.

    Usage:
        notifier = TwilioNotifier(sid, token, "+15005550006")
        result = await notifier.send("+919876543210", body)
        await notifier.close()
    """

    is_configured = True

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_phone: str,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.from_phone = from_phone
        self._auth = (account_sid, auth_token)
        self._url = f"{base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._timeout = timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                auth=self._auth,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _post_message(self, to_phone: str, body: str) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(
                self._url,
                data={"To": to_phone, "From": self.from_phone, "Body": body},
            )
        except httpx.TimeoutException as exc:
            raise TransportFailure(
                f"request timed out after {self._timeout}s", phone=to_phone,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(str(exc) or type(exc).__name__, phone=to_phone) from exc

        if response.is_error:
            raise TransportFailure(
                _error_message(response),
                phone=to_phone,
                http_status=response.status_code,
            )
        return response.json()

    async def send(self, to_phone: str, body: str) -> SendResult:
        try:
            data = await self._post_message(to_phone, body)
        except TransportFailure as exc:
            logger.error("[SMS/Twilio] Failed for %s: %s", to_phone, exc.message)
            return SendResult.failed(exc.message)
        except Exception as exc:
            logger.exception("[SMS/Twilio] Unexpected error for %s", to_phone)
            return SendResult.failed(str(exc) or type(exc).__name__)

        logger.info("[SMS/Twilio] Sent to %s (sid=%s)", to_phone, data.get("sid"))
        return SendResult.sent(sid=data.get("sid"), status=data.get("status"))


def _error_message(response: httpx.Response) -> str:
    """Twilio returns {"code": ..., "message": ...} on errors."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"HTTP {response.status_code}"


def build_notifier(settings: Settings) -> Notifier:
    """Pick the notifier implementation from settings."""
    if not settings.sms_configured:
        logger.warning("Twilio credentials missing — SOS notifications will be logged only")
        return UnconfiguredNotifier()
    logger.info("Twilio SMS notifier configured (from=%s)", settings.TWILIO_PHONE_NUMBER)
    return TwilioNotifier(
        settings.TWILIO_ACCOUNT_SID,
        settings.TWILIO_AUTH_TOKEN,
        settings.TWILIO_PHONE_NUMBER,
        base_url=settings.TWILIO_API_BASE_URL,
        timeout_seconds=settings.SMS_TIMEOUT_SECONDS,
    )
