"""Payment gateway interface used to gate analysis jobs."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol


class PaymentState(StrEnum):
    """Whether a checkout has been paid."""

    PAID = "paid"
    UNPAID = "unpaid"


@dataclass(frozen=True)
class CheckoutSession:
    """Checkout created by the payment provider."""

    id: str
    url: str


@dataclass(frozen=True)
class PaymentStatus:
    """Payment details for a checkout session."""

    state: PaymentState
    customer_email: str | None = None
    amount_total: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.state == PaymentState.PAID


class PaymentGateway(Protocol):
    """Interface for payment provider interactions."""

    async def create_checkout(  # noqa: PLR0913
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Create a hosted checkout and return its id and redirect URL."""

    async def get_payment_status(self, session_id: str) -> PaymentStatus:
        """Return the payment status of a checkout session."""

    async def issue_refund(self, session_id: str) -> bool:
        """Refund the payment behind a checkout session; true on success."""
