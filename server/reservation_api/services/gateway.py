"""Payment gateway capability and the simulated development gateway."""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Unexpected gateway failure; the outcome of the charge is unknown."""


class GatewayDeclined(GatewayError):
    """The gateway refused the charge."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class GatewayReceipt:
    """Result of a successful capture."""

    processor: str
    transaction_id: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_details(self) -> dict[str, Any]:
        return {"processor": self.processor, "transaction_id": self.transaction_id, **self.details}


class PaymentGateway(Protocol):
    """Capability used by the payment ledger to move money."""

    async def capture(self, amount: int, method: str, reference: str) -> GatewayReceipt:
        """
        Charge ``amount`` minor units.

        Raises:
            GatewayDeclined: If the charge was refused
            GatewayError: If the outcome is unknown
        """
        ...


class SimulatedGateway:
    """
    Development gateway that approves every supported method.

    Card payments are attributed to Stripe, wallets to their own processors.
    """

    _PROCESSORS = {
        "CREDIT_CARD": ("Stripe", "tx_"),
        "DEBIT_CARD": ("Stripe", "tx_"),
        "GCASH": ("GCash", "gc_"),
        "PAYMAYA": ("PayMaya", "pm_"),
        "QR_CODE": ("QR Pay", "qr_"),
    }

    async def capture(self, amount: int, method: str, reference: str) -> GatewayReceipt:
        if method not in self._PROCESSORS:
            raise GatewayDeclined("Unsupported payment method")

        processor, prefix = self._PROCESSORS[method]
        transaction_id = prefix + secrets.token_hex(8)

        if method in ("CREDIT_CARD", "DEBIT_CARD"):
            details = {"card_last4": "4242"}
        elif method == "QR_CODE":
            details = {"qr_reference": f"QR{secrets.randbelow(900000) + 100000}"}
        else:
            details = {"reference_number": f"{prefix[:2].upper()}{secrets.randbelow(900000) + 100000}"}

        logger.info(
            "Simulated capture approved",
            extra={"reference": reference, "method": method, "amount": amount, "processor": processor}
        )
        return GatewayReceipt(processor=processor, transaction_id=transaction_id, details=details)
