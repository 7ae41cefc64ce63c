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

"""Fulfillment service for turning paid checkout sessions into orders.

This module reconciles a payment provider's checkout notification with the
catalog: it derives the cart from session metadata, reserves stock and
records exactly one order per checkout session. Notifications may be
delivered more than once and concurrently; the order's unique session key is
the final guard against double fulfillment.
"""

import asyncio
import json
import logging
from typing import Any, List, Mapping, Optional

import db
from enums import FulfillmentState
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import InvalidCartError
from exceptions import MissingMetadataError
from models import CartLine
from models import CheckoutSessionNotification
from models import DerivedCart
from models import FulfillmentOutcome
from models import LegacyCart
from models import ProviderLineItem
from models import StructuredCart
from services.cart_service import coerce_quantity
from services.cart_service import CUSTOMER_LIMITS
from services.cart_service import normalize_cart
from services.inventory_service import InventoryService
from services.shipping_service import ShippingQuote
from services.shipping_service import ShippingService
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "usd"
UNKNOWN_SKU = "UNKNOWN"


def derive_cart(metadata: Mapping[str, Any]) -> DerivedCart:
  """Derives the purchased cart from checkout session metadata.

  The `items` key holds a JSON list of {"productId", "quantity"} entries. When
  it is absent, malformed or holds nothing usable, the flat `productId`, `sku`
  and `quantity` keys describe a single product.

  Args:
    metadata: The session's metadata.

  Returns:
    A StructuredCart or a LegacyCart.

  Raises:
    MissingMetadataError: If neither form yields a cart.
  """
  raw = metadata.get("items")
  if raw:
    try:
      parsed = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
      logger.info("Ignoring malformed items metadata")
      parsed = None
    if isinstance(parsed, list):
      try:
        return StructuredCart(lines=normalize_cart(parsed, CUSTOMER_LIMITS))
      except InvalidCartError:
        logger.info("Items metadata holds no usable lines")

  product_id = str(metadata.get("productId") or "").strip()
  sku = str(metadata.get("sku") or "").strip()
  quantity = coerce_quantity(metadata.get("quantity"))
  if not product_id or not sku or quantity is None:
    raise MissingMetadataError()
  quantity = min(
      max(quantity, CUSTOMER_LIMITS.min_quantity), CUSTOMER_LIMITS.max_quantity
  )
  return LegacyCart(product_id=product_id, sku=sku, quantity=quantity)


class StripeLineItemSource:
  """Fetches the line items Stripe charged for a checkout session."""

  def __init__(self, api_key: str, limit: int = 100):
    self.api_key = api_key
    self.limit = limit

  async def list_line_items(self, session_id: str) -> List[ProviderLineItem]:
    # The Stripe client is synchronous.
    result = await asyncio.to_thread(
        stripe.checkout.Session.list_line_items,
        session_id,
        limit=self.limit,
        api_key=self.api_key,
    )
    return [
        ProviderLineItem(
            description=getattr(item, "description", None),
            quantity=getattr(item, "quantity", None),
            amount_subtotal=getattr(item, "amount_subtotal", None),
            amount_total=getattr(item, "amount_total", None),
            currency=getattr(item, "currency", None),
        )
        for item in result.data
    ]


class FulfillmentService:
  """Service for reconciling payment notifications into orders."""

  def __init__(
      self,
      shipping_service: ShippingService,
      inventory_service: InventoryService,
      line_item_source: Optional[Any] = None,
  ):
    self.shipping_service = shipping_service
    self.inventory_service = inventory_service
    self.line_item_source = line_item_source

  async def reconcile(
      self,
      session: AsyncSession,
      notification: CheckoutSessionNotification,
  ) -> FulfillmentOutcome:
    """Records the order for a completed checkout session, at most once.

    Args:
      session: The database session. It is committed on success and rolled
        back on any failure.
      notification: The completed checkout session.

    Returns:
      The outcome, including every state the notification passed through.

    Raises:
      MissingMetadataError: If the session metadata describes no cart.
      ProductNotFoundError: If a cart product does not exist.
      InsufficientStockError: If stock cannot cover a line.
    """
    session_id = notification.id
    transitions = [FulfillmentState.RECEIVED]

    def advance(state: FulfillmentState) -> None:
      logger.info("Checkout session %s: %s", session_id, state.value)
      transitions.append(state)

    existing = await db.get_order_by_session_id(session, session_id)
    if existing is not None:
      advance(FulfillmentState.DUPLICATE)
      return FulfillmentOutcome(
          state=FulfillmentState.DUPLICATE,
          transitions=transitions,
          order_id=existing.id,
          reason="Order already recorded",
      )

    if notification.payment_status != PaymentStatus.PAID.value:
      logger.warning(
          "Checkout session %s not paid (payment_status=%s)",
          session_id,
          notification.payment_status,
      )
      advance(FulfillmentState.REJECTED)
      return FulfillmentOutcome(
          state=FulfillmentState.REJECTED,
          transitions=transitions,
          reason=f"Payment status is {notification.payment_status}",
      )

    cart = derive_cart(notification.metadata)
    advance(FulfillmentState.VALIDATED)

    provider_items = await self._provider_line_items(notification)
    lines = list(cart.lines)
    purchased = sum(item.quantity or 0 for item in provider_items)
    if len(lines) == 1 and purchased > 0:
      # The provider's count is what was actually charged.
      lines = [CartLine(product_id=lines[0].product_id, quantity=purchased)]

    address = (
        notification.shipping_details.address
        if notification.shipping_details
        else None
    )

    try:
      quote = await self.shipping_service.calculate(
          session,
          lines,
          country=address.country if address else None,
          strict=True,
      )
      await self.inventory_service.reserve(session, lines)
      advance(FulfillmentState.RESERVED)

      primary = lines[0]
      sku = await db.get_product_sku(session, primary.product_id)
      order = await db.insert_order(
          session,
          stripe_session_id=session_id,
          payment_intent_id=notification.payment_intent,
          status=OrderStatus.PAID.value,
          product_id=primary.product_id,
          sku=sku or UNKNOWN_SKU,
          quantity=primary.quantity,
          email=self._customer_field(notification, "email"),
          phone=self._customer_field(notification, "phone"),
          shipping_name=(
              notification.shipping_details.name
              if notification.shipping_details
              else None
          ),
          shipping_line1=address.line1 if address else None,
          shipping_line2=address.line2 if address else None,
          shipping_city=address.city if address else None,
          shipping_state=address.state if address else None,
          shipping_postal=address.postal_code if address else None,
          shipping_country=address.country if address else None,
          amount_total=(
              notification.amount_total
              if notification.amount_total is not None
              else quote.subtotal_cents + quote.shipping_cents
          ),
          currency=notification.currency or DEFAULT_CURRENCY,
          items=self._items_snapshot(provider_items, lines, quote),
      )
      await session.commit()
    except Exception:
      await session.rollback()
      # A concurrent delivery of the same session may have committed first,
      # taking the stock (InsufficientStockError) or the key (IntegrityError).
      existing = await db.get_order_by_session_id(session, session_id)
      if existing is None:
        raise
      advance(FulfillmentState.DUPLICATE)
      return FulfillmentOutcome(
          state=FulfillmentState.DUPLICATE,
          transitions=transitions,
          order_id=existing.id,
          cart_source=cart.source,
          reason="Order already recorded",
      )

    advance(FulfillmentState.COMMITTED)
    logger.info(
        "Created order %s for checkout session %s (%s cart)",
        order.id,
        session_id,
        cart.source.value,
    )
    return FulfillmentOutcome(
        state=FulfillmentState.COMMITTED,
        transitions=transitions,
        order_id=order.id,
        cart_source=cart.source,
    )

  async def _provider_line_items(
      self, notification: CheckoutSessionNotification
  ) -> List[ProviderLineItem]:
    if notification.line_items is not None:
      return list(notification.line_items.data)
    if self.line_item_source is None:
      return []
    return await self.line_item_source.list_line_items(notification.id)

  def _customer_field(
      self, notification: CheckoutSessionNotification, name: str
  ) -> Optional[str]:
    if notification.customer_details is None:
      return None
    return getattr(notification.customer_details, name) or None

  def _items_snapshot(
      self,
      provider_items: List[ProviderLineItem],
      lines: List[CartLine],
      quote: ShippingQuote,
  ) -> List[dict]:
    """Builds the stored line snapshot, preferring the provider's figures."""
    if provider_items:
      return [
          {
              "description": item.description,
              "quantity": item.quantity,
              "amountSubtotal": item.amount_subtotal,
              "amountTotal": item.amount_total,
              "currency": item.currency,
          }
          for item in provider_items
      ]

    snapshot = []
    for line in lines:
      product = quote.products[line.product_id]
      line_total = product.price_cents * line.quantity
      snapshot.append({
          "productId": product.id,
          "sku": product.sku,
          "description": product.name,
          "quantity": line.quantity,
          "amountSubtotal": line_total,
          "amountTotal": line_total,
          "currency": product.currency,
      })
    return snapshot
