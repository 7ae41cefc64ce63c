#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Payment webhook routes for the storefront server."""

import logging
from typing import Any

import dependencies
from exceptions import InvalidCartError
from exceptions import MissingMetadataError
from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse
from models import CheckoutSessionNotification
from models import StripeEvent
from pydantic import ValidationError
from services.fulfillment_service import FulfillmentService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter()

CHECKOUT_COMPLETED = "checkout.session.completed"


@router.post(
    "/api/stripe/webhook",
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    payload: bytes = Depends(dependencies.verified_webhook_payload),
    session: AsyncSession = Depends(dependencies.get_db),
    fulfillment_service: FulfillmentService = Depends(
        dependencies.get_fulfillment_service
    ),
) -> Any:
  """Records the order for a completed Stripe checkout session."""
  try:
    event = StripeEvent.model_validate_json(payload)
    notification = None
    if event.type == CHECKOUT_COMPLETED:
      notification = CheckoutSessionNotification.model_validate(
          event.data.object
      )
  except ValidationError as e:
    logger.warning("Rejected malformed webhook payload: %s", e)
    return JSONResponse(
        status_code=400, content={"error": "Webhook Error: invalid payload"}
    )

  if notification is None:
    logger.info("Ignoring webhook event %s (%s)", event.id, event.type)
    return {"received": True}

  try:
    outcome = await fulfillment_service.reconcile(session, notification)
  except (MissingMetadataError, InvalidCartError) as e:
    logger.warning(
        "Checkout session %s rejected: %s", notification.id, e.message
    )
    return JSONResponse(status_code=400, content={"error": e.message})
  except Exception:  # pylint: disable=broad-exception-caught
    # Non-2xx responses make Stripe redeliver the event.
    logger.exception(
        "Webhook handler failed for checkout session %s", notification.id
    )
    return JSONResponse(
        status_code=500, content={"error": "Webhook handler failed"}
    )

  return {"received": True, "state": outcome.state.value}
