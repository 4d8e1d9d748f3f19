"""
외부 결제 제공자(Stripe) 연동
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional
import stripe
from config.exception import PaymentGatewayError
from logs.logging_util import LoggerSingleton
import logging

logger = LoggerSingleton.get_logger(logger_name="payment_gateway", level=logging.INFO)


@dataclass
class PaymentIntentResult:
    intent_id: str
    client_secret: Optional[str]


@dataclass
class IntentState:
    """제공자 측 결제 의도 상태 (Stripe status 문자열, 센트 단위 금액)"""
    intent_id: str
    status: str
    amount: int
    refunded: bool


class PaymentGateway:
    """결제 제공자 인터페이스. 예약 로직은 이 세 호출만 사용한다."""

    def create_intent(self, amount: Decimal, metadata: Dict[str, str]) -> PaymentIntentResult:
        raise NotImplementedError

    def retrieve_intent(self, intent_id: str) -> IntentState:
        raise NotImplementedError

    def refund(self, intent_id: str, reason: str) -> None:
        raise NotImplementedError


def to_minor_units(amount: Decimal) -> int:
    return int(amount * 100)  # 센트 단위


class StripePaymentGateway(PaymentGateway):
    def __init__(self, api_key: Optional[str], currency: str = "usd"):
        if not api_key:
            logger.warning("STRIPE_SECRET_KEY not set! Payment calls will fail.")
        self.api_key = api_key
        self.currency = currency

    def create_intent(self, amount: Decimal, metadata: Dict[str, str]) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=self.currency,
                automatic_payment_methods={"enabled": True},
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent creation failed: {str(e)}")
            raise PaymentGatewayError(f"Payment creation failed: {e.user_message or str(e)}") from e

        logger.info(f"PaymentIntent created: id={intent.id}")
        return PaymentIntentResult(intent_id=intent.id, client_secret=intent.client_secret)

    def retrieve_intent(self, intent_id: str) -> IntentState:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
            refunds = stripe.Refund.list(api_key=self.api_key, payment_intent=intent_id, limit=10)
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent lookup failed: intent={intent_id}, error={str(e)}")
            raise PaymentGatewayError(f"Payment lookup failed: {e.user_message or str(e)}") from e

        refunded = any(r.status in ("succeeded", "pending") for r in refunds.data)
        return IntentState(
            intent_id=intent.id,
            status=intent.status,
            amount=intent.amount,
            refunded=refunded,
        )

    def refund(self, intent_id: str, reason: str) -> None:
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=intent_id,
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed: intent={intent_id}, error={str(e)}")
            raise PaymentGatewayError(f"Refund failed: {e.user_message or str(e)}") from e

        if refund.status not in ("succeeded", "pending"):
            logger.error(f"Stripe refund not accepted: intent={intent_id}, status={refund.status}")
            raise PaymentGatewayError(f"Refund failed with status: {refund.status}")

        logger.info(f"Refund issued: intent={intent_id}, refund_id={refund.id}")
