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

"""Manual order service for orders entered by an operator.

Manual orders are taken outside the payment provider (phone, in person) and
go through the same stock reservation as paid checkouts. They are keyed by a
generated `manual_<uuid>` session key so they share the orders table.
"""

import logging
import math
from typing import Any, Optional
import uuid

import db
from enums import OrderStatus
from exceptions import InvalidRequestError
from models import ManualOrderRequest
from models import OrderSnapshot
from services.cart_service import ADMIN_LIMITS
from services.cart_service import normalize_cart
from services.inventory_service import InventoryService
from services.shipping_service import ShippingService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MANUAL_KEY_PREFIX = "manual_"


def parse_shipping_override(value: Any) -> Optional[int]:
  """Parses the operator's shipping amount.

  Args:
    value: None or "" for "use the calculator", otherwise a number or numeric
      string of cents.

  Returns:
    The rounded amount in cents, or None when no override was given.

  Raises:
    InvalidRequestError: If the value is not a finite number >= 0.
  """
  if value is None or (isinstance(value, str) and not value.strip()):
    return None
  if isinstance(value, bool):
    raise InvalidRequestError("shippingCents must be a number >= 0")
  try:
    amount = float(value)
  except (TypeError, ValueError):
    raise InvalidRequestError("shippingCents must be a number >= 0") from None
  if not math.isfinite(amount) or amount < 0:
    raise InvalidRequestError("shippingCents must be a number >= 0")
  return round(amount)


class ManualOrderService:
  """Service for composing operator-entered orders."""

  def __init__(
      self,
      shipping_service: ShippingService,
      inventory_service: InventoryService,
  ):
    self.shipping_service = shipping_service
    self.inventory_service = inventory_service

  async def create_order(
      self, session: AsyncSession, request: ManualOrderRequest
  ) -> OrderSnapshot:
    """Validates, prices and records a manual order.

    Args:
      session: The database session. It is committed on success and rolled
        back on any failure.
      request: The operator's order.

    Returns:
      The created order.

    Raises:
      InvalidCartError: If the request holds no usable items.
      InvalidRequestError: If the customer, currency or address is invalid.
      ProductNotFoundError: If an item's product does not exist.
      InsufficientStockError: If stock cannot cover an item.
    """
    lines = normalize_cart(request.items, ADMIN_LIMITS)

    customer = request.customer
    if not customer.email:
      raise InvalidRequestError("customer.email is required")

    address = request.shipping_address
    country = address.country.upper() or self.shipping_service.home_country
    override = parse_shipping_override(request.shipping_cents)

    try:
      # Strict pricing doubles as the existence check for every product.
      quote = await self.shipping_service.calculate(
          session, lines, country=country, strict=True
      )
      products = quote.products

      currencies = {(p.currency or "usd").lower() for p in products.values()}
      if len(currencies) > 1:
        raise InvalidRequestError("All items must have the same currency")
      currency = currencies.pop()

      requires_shipping = quote.requires_shipping
      if requires_shipping and not address.model_copy(
          update={"country": country}
      ).is_complete():
        raise InvalidRequestError(
            "shippingAddress is required for shippable items"
            " (line1, city, state, postal, country)"
        )

      if not requires_shipping:
        shipping = 0
      elif override is not None:
        shipping = override
      else:
        shipping = quote.shipping_cents

      items = []
      for line in lines:
        product = products[line.product_id]
        line_total = product.price_cents * line.quantity
        items.append({
            "productId": product.id,
            "sku": product.sku,
            "description": product.name,
            "quantity": line.quantity,
            "amountSubtotal": line_total,
            "amountTotal": line_total,
            "currency": currency,
        })

      await self.inventory_service.reserve(session, lines)

      primary = lines[0]
      order = await db.insert_order(
          session,
          stripe_session_id=f"{MANUAL_KEY_PREFIX}{uuid.uuid4()}",
          payment_intent_id=None,
          status=(request.status or "").strip() or OrderStatus.PENDING.value,
          product_id=primary.product_id,
          sku=products[primary.product_id].sku,
          quantity=primary.quantity,
          email=customer.email,
          phone=customer.phone or None,
          shipping_name=customer.name or None,
          shipping_line1=address.line1 if requires_shipping else None,
          shipping_line2=(address.line2 or None) if requires_shipping else None,
          shipping_city=address.city if requires_shipping else None,
          shipping_state=address.state if requires_shipping else None,
          shipping_postal=address.postal if requires_shipping else None,
          shipping_country=country if requires_shipping else None,
          amount_total=quote.subtotal_cents + shipping,
          currency=currency,
          items=items,
      )
      await session.commit()
    except Exception:
      await session.rollback()
      raise

    logger.info(
        "Created manual order %s for %s (%d cents)",
        order.id,
        customer.email,
        order.amount_total,
    )
    return OrderSnapshot.from_order(order)
