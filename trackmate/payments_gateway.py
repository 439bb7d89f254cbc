import logging
from typing import Optional, Sequence
import stripe
from starlette.concurrency import run_in_threadpool

from trackmate.utils import settings, UpstreamException

logger = logging.getLogger("trackmate")

class PaymentGateway:
    """Issues payment intents and hands back their client secret."""

    async def create_payment_intent(
        self,
        amount: int,
        currency: str = "usd",
        methods: Sequence[str] = ("card",),
    ) -> str:
        raise NotImplementedError

class StripePaymentGateway(PaymentGateway):
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    async def create_payment_intent(
        self,
        amount: int,
        currency: str = "usd",
        methods: Sequence[str] = ("card",),
    ) -> str:
        if not self.api_key:
            raise UpstreamException("Payment service is not configured")

        try:
            # The stripe client is blocking
            intent = await run_in_threadpool(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                payment_method_types=list(methods),
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("Payment intent creation failed: %s", e.user_message or str(e))
            raise UpstreamException(e.user_message or str(e))

        return intent.client_secret

def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway(settings.STRIPE_SECRET_KEY)
