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

"""FastAPI dependencies for the storefront server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Admin-Secret header validation for admin endpoints.
- Service instantiation (ShippingService, FulfillmentService,
  ManualOrderService).
- Database session management.
- Stripe signature verification for webhooks.
"""

import logging
from typing import AsyncGenerator, Optional

import config
import db
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from fastapi import Request
from services.fulfillment_service import FulfillmentService
from services.fulfillment_service import StripeLineItemSource
from services.inventory_service import InventoryService
from services.manual_order_service import ManualOrderService
from services.shipping_service import ShippingService
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

logger = logging.getLogger(__name__)


async def verify_admin_secret(
    admin_secret: Optional[str] = Header(None, alias="Admin-Secret"),
) -> None:
  """Verifies the secret for admin endpoints."""
  expected_secret = config.FLAGS.admin_secret
  if not expected_secret:
    raise HTTPException(status_code=500, detail="Admin secret not configured")

  if not admin_secret or admin_secret != expected_secret:
    raise HTTPException(status_code=403, detail="Invalid Admin Secret")


async def verified_webhook_payload(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> bytes:
  """Returns the raw webhook body once its Stripe signature checks out.

  Requests are refused while no webhook secret is configured.

  Args:
    request: The incoming request.
    stripe_signature: The Stripe-Signature header.

  Returns:
    The raw request body.
  """
  secret = config.FLAGS.stripe_webhook_secret
  if not secret:
    logger.error("Rejecting webhook; no webhook secret configured")
    raise HTTPException(
        status_code=500, detail="Webhook secret not configured"
    )

  payload = await request.body()
  if not stripe_signature:
    raise HTTPException(status_code=400, detail="Missing Stripe-Signature")
  try:
    stripe.WebhookSignature.verify_header(
        payload.decode("utf-8"), stripe_signature, secret
    )
  except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
    logger.warning("Rejected webhook with invalid signature: %s", e)
    raise HTTPException(
        status_code=400, detail=f"Webhook Error: {e}"
    ) from None
  return payload


def get_shipping_service() -> ShippingService:
  """Dependency provider for ShippingService."""
  return ShippingService(home_country=config.FLAGS.home_country or "US")


def get_inventory_service() -> InventoryService:
  """Dependency provider for InventoryService."""
  return InventoryService()


def get_fulfillment_service(
    shipping_service: ShippingService = Depends(get_shipping_service),
    inventory_service: InventoryService = Depends(get_inventory_service),
) -> FulfillmentService:
  """Dependency provider for FulfillmentService."""
  api_key = config.FLAGS.stripe_api_key
  return FulfillmentService(
      shipping_service,
      inventory_service,
      line_item_source=StripeLineItemSource(api_key) if api_key else None,
  )


def get_manual_order_service(
    shipping_service: ShippingService = Depends(get_shipping_service),
    inventory_service: InventoryService = Depends(get_inventory_service),
) -> ManualOrderService:
  """Dependency provider for ManualOrderService."""
  return ManualOrderService(shipping_service, inventory_service)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a database session."""
  async with db.manager.session_factory() as session:
    yield session
