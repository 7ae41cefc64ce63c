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

"""Tests for reconciling checkout notifications into orders."""

import asyncio
import json
from typing import Any, Optional

from absl.testing import absltest
from enums import CartSource
from enums import FulfillmentState
from exceptions import InsufficientStockError
from exceptions import MissingMetadataError
from exceptions import ProductNotFoundError
from models import CheckoutSessionNotification
from models import LegacyCart
from models import ProviderLineItem
from models import StructuredCart
from services import fulfillment_service
from services.fulfillment_service import FulfillmentService
from services.inventory_service import InventoryService
from services.shipping_service import ShippingService
import testing_db

FULL_PATH = [
    FulfillmentState.RECEIVED,
    FulfillmentState.VALIDATED,
    FulfillmentState.RESERVED,
    FulfillmentState.COMMITTED,
]


def _items_metadata(*pairs):
  return json.dumps([{"productId": p, "quantity": q} for p, q in pairs])


def make_notification(
    session_id: str = "sess_123",
    payment_status: str = "paid",
    metadata: Optional[dict[str, Any]] = None,
    line_items: Optional[list[dict[str, Any]]] = None,
    **overrides: Any,
) -> CheckoutSessionNotification:
  data = {
      "id": session_id,
      "object": "checkout.session",
      "payment_status": payment_status,
      "payment_intent": "pi_123",
      "customer_details": {"email": "ada@example.com", "phone": "555-0100"},
      "shipping_details": {
          "name": "Ada Lovelace",
          "address": {
              "line1": "1 Analytical Way",
              "line2": None,
              "city": "Portland",
              "state": "OR",
              "postal_code": "97201",
              "country": "US",
          },
      },
      "metadata": (
          metadata
          if metadata is not None
          else {"items": _items_metadata(("A", 1))}
      ),
      "amount_total": 1450,
      "currency": "usd",
  }
  if line_items is not None:
    data["line_items"] = {"object": "list", "data": line_items}
  data.update(overrides)
  return CheckoutSessionNotification.model_validate(data)


def provider_item(quantity, amount=1000, description="Product A"):
  return {
      "description": description,
      "quantity": quantity,
      "amount_subtotal": amount,
      "amount_total": amount,
      "currency": "usd",
  }


class FakeLineItemSource:

  def __init__(self, items):
    self.items = items
    self.calls = []

  async def list_line_items(self, session_id):
    self.calls.append(session_id)
    return self.items


class FailingInventoryService(InventoryService):
  """Reserves every line, then fails as if the last step had broken."""

  async def reserve(self, session, lines):
    await super().reserve(session, lines)
    raise RuntimeError("disk full")


class RivalDeliveryInventoryService(InventoryService):
  """Lets another delivery of the session commit just before reserving."""

  def __init__(self, rival):
    self.rival = rival

  async def reserve(self, session, lines):
    await self.rival()
    await super().reserve(session, lines)


class DeriveCartTest(absltest.TestCase):

  def test_structured_items(self):
    cart = fulfillment_service.derive_cart(
        {"items": _items_metadata(("A", 3), ("B", 1), ("A", 2))}
    )
    self.assertIsInstance(cart, StructuredCart)
    self.assertEqual(cart.source, CartSource.STRUCTURED)
    self.assertEqual(
        {line.product_id: line.quantity for line in cart.lines},
        {"A": 5, "B": 1},
    )

  def test_structured_items_are_clamped(self):
    cart = fulfillment_service.derive_cart(
        {"items": _items_metadata(("A", 50))}
    )
    self.assertEqual(cart.lines[0].quantity, 10)

  def test_malformed_items_fall_back_to_legacy_fields(self):
    legacy = {"productId": "A", "sku": "SKU-A", "quantity": "2"}
    for items in (
        "{not json",
        "[]",
        '[{"productId": "", "quantity": 1}]',
        '{"productId": "B"}',
    ):
      cart = fulfillment_service.derive_cart({"items": items, **legacy})
      self.assertIsInstance(cart, LegacyCart)
      self.assertEqual(cart.source, CartSource.LEGACY)
      self.assertEqual(cart.product_id, "A")
      self.assertEqual(cart.sku, "SKU-A")
      self.assertEqual(cart.quantity, 2)
      self.assertLen(cart.lines, 1)

  def test_legacy_fields_alone(self):
    cart = fulfillment_service.derive_cart(
        {"productId": "A", "sku": "SKU-A", "quantity": "1"}
    )
    self.assertIsInstance(cart, LegacyCart)

  def test_missing_metadata(self):
    for metadata in (
        {},
        {"productId": "A", "quantity": "1"},
        {"productId": "A", "sku": "SKU-A"},
        {"productId": "A", "sku": "SKU-A", "quantity": "0"},
        {"items": "[]", "sku": "SKU-A", "quantity": "1"},
    ):
      with self.assertRaises(MissingMetadataError):
        fulfillment_service.derive_cart(metadata)


class FulfillmentServiceTest(testing_db.StorefrontTestCase):

  def setUp(self):
    super().setUp()
    self.add_products(
        testing_db.make_product("A", stock=5, weight_g=100.0),
        testing_db.make_product("B", stock=2, weight_g=200.0),
    )

  def make_service(self, inventory_service=None, line_item_source=None):
    return FulfillmentService(
        ShippingService(home_country="US"),
        inventory_service or InventoryService(),
        line_item_source=line_item_source,
    )

  def reconcile(self, notification, service=None):
    service = service or self.make_service()
    return self.run_in_session(
        lambda session: service.reconcile(session, notification)
    )

  def test_commits_order_from_structured_metadata(self):
    outcome = self.reconcile(
        make_notification(
            metadata={"items": _items_metadata(("A", 2), ("B", 1))},
            line_items=[
                provider_item(2, 2000, "Product A"),
                provider_item(1, 1000, "Product B"),
            ],
        )
    )

    self.assertEqual(outcome.state, FulfillmentState.COMMITTED)
    self.assertEqual(outcome.transitions, FULL_PATH)
    self.assertEqual(outcome.cart_source, CartSource.STRUCTURED)
    self.assertEqual(self.stock_of("A"), 3)
    self.assertEqual(self.stock_of("B"), 1)

    (order,) = self.all_orders()
    self.assertEqual(order.id, outcome.order_id)
    self.assertEqual(order.stripe_session_id, "sess_123")
    self.assertEqual(order.payment_intent_id, "pi_123")
    self.assertEqual(order.status, "PAID")
    self.assertEqual(order.product_id, "A")
    self.assertEqual(order.sku, "SKU-A")
    self.assertEqual(order.quantity, 2)
    self.assertEqual(order.email, "ada@example.com")
    self.assertEqual(order.phone, "555-0100")
    self.assertEqual(order.shipping_name, "Ada Lovelace")
    self.assertEqual(order.shipping_line1, "1 Analytical Way")
    self.assertIsNone(order.shipping_line2)
    self.assertEqual(order.shipping_postal, "97201")
    self.assertEqual(order.shipping_country, "US")
    self.assertEqual(order.amount_total, 1450)
    self.assertEqual(order.currency, "usd")
    self.assertEqual(
        order.items,
        [
            {
                "description": "Product A",
                "quantity": 2,
                "amountSubtotal": 2000,
                "amountTotal": 2000,
                "currency": "usd",
            },
            {
                "description": "Product B",
                "quantity": 1,
                "amountSubtotal": 1000,
                "amountTotal": 1000,
                "currency": "usd",
            },
        ],
    )

  def test_same_notification_twice_creates_one_order(self):
    notification = make_notification()

    first = self.reconcile(notification)
    second = self.reconcile(notification)

    self.assertEqual(first.state, FulfillmentState.COMMITTED)
    self.assertEqual(second.state, FulfillmentState.DUPLICATE)
    self.assertEqual(
        second.transitions,
        [FulfillmentState.RECEIVED, FulfillmentState.DUPLICATE],
    )
    self.assertEqual(second.order_id, first.order_id)
    self.assertLen(self.all_orders(), 1)
    self.assertEqual(self.stock_of("A"), 4)

  def test_concurrent_deliveries_create_one_order(self):
    notification = make_notification(
        line_items=[provider_item(1)],
    )
    service = self.make_service()

    async def deliver():
      async with self.session_factory() as session:
        return await service.reconcile(session, notification)

    async def deliver_twice():
      return await asyncio.gather(deliver(), deliver())

    outcomes = asyncio.run(deliver_twice())

    self.assertCountEqual(
        [o.state for o in outcomes],
        [FulfillmentState.COMMITTED, FulfillmentState.DUPLICATE],
    )
    self.assertEqual(outcomes[0].order_id, outcomes[1].order_id)
    self.assertLen(self.all_orders(), 1)
    self.assertEqual(self.stock_of("A"), 4)

  def test_delivery_losing_last_unit_to_its_twin_is_duplicate(self):
    self.add_products(testing_db.make_product("last", stock=1))
    notification = make_notification(
        metadata={"items": _items_metadata(("last", 1))}
    )
    rival_outcomes = []

    async def rival():
      async with self.session_factory() as session:
        rival_outcomes.append(
            await self.make_service().reconcile(session, notification)
        )

    service = self.make_service(
        inventory_service=RivalDeliveryInventoryService(rival)
    )
    outcome = self.reconcile(notification, service=service)

    (rival_outcome,) = rival_outcomes
    self.assertEqual(rival_outcome.state, FulfillmentState.COMMITTED)
    self.assertEqual(outcome.state, FulfillmentState.DUPLICATE)
    self.assertEqual(outcome.order_id, rival_outcome.order_id)
    self.assertEqual(
        outcome.transitions,
        [
            FulfillmentState.RECEIVED,
            FulfillmentState.VALIDATED,
            FulfillmentState.DUPLICATE,
        ],
    )
    self.assertLen(self.all_orders(), 1)
    self.assertEqual(self.stock_of("last"), 0)

  def test_concurrent_deliveries_of_last_unit_create_one_order(self):
    self.add_products(testing_db.make_product("last", stock=1))
    notification = make_notification(
        metadata={"items": _items_metadata(("last", 1))}
    )
    service = self.make_service()

    async def deliver():
      async with self.session_factory() as session:
        return await service.reconcile(session, notification)

    async def deliver_twice():
      return await asyncio.gather(deliver(), deliver())

    outcomes = asyncio.run(deliver_twice())

    self.assertCountEqual(
        [o.state for o in outcomes],
        [FulfillmentState.COMMITTED, FulfillmentState.DUPLICATE],
    )
    self.assertEqual(outcomes[0].order_id, outcomes[1].order_id)
    self.assertLen(self.all_orders(), 1)
    self.assertEqual(self.stock_of("last"), 0)

  def test_unpaid_session_is_rejected(self):
    outcome = self.reconcile(make_notification(payment_status="unpaid"))

    self.assertEqual(outcome.state, FulfillmentState.REJECTED)
    self.assertEqual(
        outcome.transitions,
        [FulfillmentState.RECEIVED, FulfillmentState.REJECTED],
    )
    self.assertIsNone(outcome.order_id)
    self.assertEmpty(self.all_orders())
    self.assertEqual(self.stock_of("A"), 5)

  def test_duplicate_check_runs_before_payment_gate(self):
    self.reconcile(make_notification())
    outcome = self.reconcile(make_notification(payment_status="unpaid"))
    self.assertEqual(outcome.state, FulfillmentState.DUPLICATE)

  def test_missing_metadata_raises_without_side_effects(self):
    with self.assertRaises(MissingMetadataError):
      self.reconcile(make_notification(metadata={"foo": "bar"}))
    self.assertEmpty(self.all_orders())
    self.assertEqual(self.stock_of("A"), 5)

  def test_legacy_metadata(self):
    outcome = self.reconcile(
        make_notification(
            metadata={"productId": "B", "sku": "stale-sku", "quantity": "2"}
        )
    )

    self.assertEqual(outcome.state, FulfillmentState.COMMITTED)
    self.assertEqual(outcome.cart_source, CartSource.LEGACY)
    (order,) = self.all_orders()
    # The SKU is read from the catalog, not from the metadata.
    self.assertEqual(order.sku, "SKU-B")
    self.assertEqual(order.quantity, 2)
    self.assertEqual(self.stock_of("B"), 0)

  def test_single_line_uses_provider_quantity(self):
    outcome = self.reconcile(
        make_notification(
            metadata={"items": _items_metadata(("A", 1))},
            line_items=[provider_item(2), provider_item(1)],
        )
    )

    self.assertEqual(outcome.state, FulfillmentState.COMMITTED)
    (order,) = self.all_orders()
    self.assertEqual(order.quantity, 3)
    self.assertEqual(self.stock_of("A"), 2)

  def test_multi_line_ignores_provider_quantity(self):
    self.reconcile(
        make_notification(
            metadata={"items": _items_metadata(("A", 1), ("B", 1))},
            line_items=[provider_item(4)],
        )
    )

    self.assertEqual(self.stock_of("A"), 4)
    self.assertEqual(self.stock_of("B"), 1)

  def test_fetches_line_items_when_event_has_none(self):
    source = FakeLineItemSource([ProviderLineItem(**provider_item(2))])

    self.reconcile(
        make_notification(),
        service=self.make_service(line_item_source=source),
    )

    self.assertEqual(source.calls, ["sess_123"])
    (order,) = self.all_orders()
    self.assertEqual(order.quantity, 2)
    self.assertEqual(order.items[0]["description"], "Product A")

  def test_catalog_snapshot_without_provider_line_items(self):
    self.reconcile(
        make_notification(
            metadata={"items": _items_metadata(("A", 2))},
            amount_total=None,
            currency=None,
        )
    )

    (order,) = self.all_orders()
    # 2 x 1000 plus the 450 fallback rate for 200 g.
    self.assertEqual(order.amount_total, 2450)
    self.assertEqual(order.currency, "usd")
    self.assertEqual(
        order.items,
        [{
            "productId": "A",
            "sku": "SKU-A",
            "description": "Product A",
            "quantity": 2,
            "amountSubtotal": 2000,
            "amountTotal": 2000,
            "currency": "usd",
        }],
    )

  def test_insufficient_stock_on_last_line_rolls_back(self):
    with self.assertRaises(InsufficientStockError) as cm:
      self.reconcile(
          make_notification(
              metadata={"items": _items_metadata(("A", 2), ("B", 3))}
          )
      )

    self.assertEqual(cm.exception.product_id, "B")
    self.assertEqual(self.stock_of("A"), 5)
    self.assertEqual(self.stock_of("B"), 2)
    self.assertEmpty(self.all_orders())

  def test_failure_after_reservation_rolls_back(self):
    with self.assertRaises(RuntimeError):
      self.reconcile(
          make_notification(
              metadata={"items": _items_metadata(("A", 2), ("B", 1))}
          ),
          service=self.make_service(
              inventory_service=FailingInventoryService()
          ),
      )

    self.assertEqual(self.stock_of("A"), 5)
    self.assertEqual(self.stock_of("B"), 2)
    self.assertEmpty(self.all_orders())

    # A redelivery after the failure still fulfills the order.
    outcome = self.reconcile(
        make_notification(
            metadata={"items": _items_metadata(("A", 2), ("B", 1))}
        )
    )
    self.assertEqual(outcome.state, FulfillmentState.COMMITTED)

  def test_unknown_product_is_fatal(self):
    with self.assertRaises(ProductNotFoundError):
      self.reconcile(
          make_notification(
              metadata={"items": _items_metadata(("A", 1), ("ghost", 1))}
          )
      )
    self.assertEqual(self.stock_of("A"), 5)
    self.assertEmpty(self.all_orders())


if __name__ == "__main__":
  absltest.main()
