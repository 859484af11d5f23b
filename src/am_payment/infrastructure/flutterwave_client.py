"""FlutterwaveGateway: PaymentGatewayProtocol over the Flutterwave v3 REST API.

Sessions are opened with POST /v3/payments (Bearer secret key) and answered
with a hosted checkout link. Webhooks are authenticated by an HMAC-SHA256 hex
digest of the raw body under the shared webhook secret, sent in the
GATEWAY_SIGNATURE_HEADER header.
"""

import hashlib
import hmac
import logging

import httpx

from config.settings import settings
from src.am_common.errors import MalformedSignalError, NetworkUnavailableError
from src.am_common.units import minor_to_major_str

logger = logging.getLogger(__name__)


def sign_payload(raw_payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_payload, hashlib.sha256).hexdigest()


class FlutterwaveGateway:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        webhook_secret: str,
        redirect_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_secret = webhook_secret
        self._redirect_url = redirect_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def create_payment_session(
        self,
        amount: int,
        currency: str,
        reference: str,
        customer_id: str,
        description: str = "",
    ) -> str:
        payload = {
            "tx_ref": reference,
            "amount": minor_to_major_str(amount, currency),
            "currency": currency,
            "redirect_url": self._redirect_url,
            "customer": {"email": f"{customer_id}@users.invalid", "name": customer_id},
            "meta": {"customer_id": customer_id},
            "customizations": {"title": "Agent Market", "description": description},
        }
        try:
            response = await self._client.post("/v3/payments", json=payload)
        except httpx.TransportError as exc:
            raise NetworkUnavailableError(f"payment gateway unreachable: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkUnavailableError(f"payment gateway returned {response.status_code}")
        body = response.json()
        if response.status_code >= 400 or body.get("status") != "success":
            raise MalformedSignalError(f"payment session refused: {body.get('message')}")

        link = str(body["data"]["link"])
        logger.info("Opened payment session %s for %d %s", reference, amount, currency)
        return link

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool:
        if not signature or not self._webhook_secret:
            return False
        expected = sign_payload(raw_payload, self._webhook_secret)
        return hmac.compare_digest(expected, signature.strip().lower())

    async def aclose(self) -> None:
        await self._client.aclose()


_gateway: FlutterwaveGateway | None = None


def get_payment_gateway() -> FlutterwaveGateway:
    """Process-wide gateway built from settings."""
    global _gateway  # noqa: PLW0603
    if _gateway is None:
        _gateway = FlutterwaveGateway(
            base_url=settings.GATEWAY_API_URL,
            secret_key=settings.GATEWAY_SECRET_KEY,
            webhook_secret=settings.GATEWAY_WEBHOOK_SECRET,
            redirect_url=settings.GATEWAY_REDIRECT_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway  # noqa: PLW0603
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
