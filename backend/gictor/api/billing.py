import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Optional

import stripe
from fastapi import APIRouter, Header, Request

from gictor.api.deps import LedgerDep, SettingsDep
from gictor.exceptions import InvalidInputError, ServiceConfigurationError, UnauthorizedCallbackError
from gictor.schemas.envelope import FieldIssue

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    ledger: LedgerDep,
    settings: SettingsDep,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> dict[str, Any]:
    """Credit purchased credits for a paid checkout session.

    The checkout session id is the ledger reference, so a redelivered event
    credits the account once.
    """
    if not settings.stripe_webhook_secret:
        logger.error("Stripe webhook secret is not configured")
        raise ServiceConfigurationError()

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature or "", settings.stripe_webhook_secret)
    except ValueError as e:
        raise InvalidInputError([FieldIssue(field="body", message="Invalid webhook payload")]) from e
    except stripe.SignatureVerificationError as e:
        logger.warning("Rejected Stripe webhook with invalid signature")
        raise UnauthorizedCallbackError("Invalid signature") from e

    logger.info(f"Stripe event received: {event['type']}")
    if event["type"] != "checkout.session.completed":
        return {"received": True}

    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    if session.get("payment_status") != "paid":
        logger.info(f"Ignoring unpaid checkout session {session.get('id')}")
        return {"received": True}

    try:
        user_id = uuid.UUID(str(metadata["user_id"]))
        credits = Decimal(str(metadata["credits"]))
    except (KeyError, ValueError, InvalidOperation):
        # Not retried by Stripe: the session itself is malformed
        logger.error(f"Checkout session {session.get('id')} has invalid credit metadata: {metadata}")
        return {"received": True}

    if credits <= 0:
        logger.error(f"Checkout session {session.get('id')} grants non-positive credits: {credits}")
        return {"received": True}

    credited = await ledger.purchase(
        user_id,
        credits,
        session["id"],
        description=f"Purchased {credits} credits",
    )
    return {"received": True, "credited": credited}
