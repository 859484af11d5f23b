# src/am_payment/domain/gateway.py
"""PaymentGateway Protocol. Unit tests inject a fake conforming to it."""

from typing import Protocol


class PaymentGatewayProtocol(Protocol):
    async def create_payment_session(
        self,
        amount: int,
        currency: str,
        reference: str,
        customer_id: str,
        description: str = "",
    ) -> str:
        """Open a hosted payment session for `amount` minor units. Returns the payment link."""
        ...

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool: ...

    async def aclose(self) -> None: ...
