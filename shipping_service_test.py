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

"""Tests for cart pricing and shipping calculation."""

import collections

from absl.testing import absltest
from absl.testing import parameterized
import db
from exceptions import ProductNotFoundError
from models import CartLine
from services import shipping_service
from services.shipping_service import ShippingService
import testing_db

Tier = collections.namedtuple(
    "Tier", ["min_weight_g", "max_weight_g", "rate_cents"]
)

US_TIERS = [(0, 250, 450), (251, 750, 875)]


class SelectTierTest(parameterized.TestCase):

  TIERS = [Tier(0, 250, 450), Tier(251, 750, 875), Tier(751, 2000, 1200)]

  @parameterized.parameters(
      (0, 450),
      (250, 450),
      (251, 875),
      (750, 875),
      (751, 1200),
      (2000, 1200),
      (2001, 1200),
      (50000, 1200),
  )
  def test_gap_free_tiers_always_select_a_tier(self, weight, rate):
    tier = shipping_service.select_tier(self.TIERS, weight)
    self.assertIsNotNone(tier)
    self.assertEqual(tier.rate_cents, rate)

  def test_every_weight_selects_exactly_one_containing_tier(self):
    for weight in range(0, 2500, 7):
      tier = shipping_service.select_tier(self.TIERS, weight)
      containing = [
          t for t in self.TIERS if t.min_weight_g <= weight <= t.max_weight_g
      ]
      if containing:
        self.assertEqual([tier], containing)
      else:
        self.assertEqual(tier, self.TIERS[-1])

  def test_unsorted_tiers(self):
    tiers = list(reversed(self.TIERS))
    self.assertEqual(shipping_service.select_tier(tiers, 100).rate_cents, 450)

  def test_gap_and_below_take_next_tier_up(self):
    tiers = [Tier(100, 200, 500), Tier(300, 400, 700)]
    self.assertEqual(shipping_service.select_tier(tiers, 50).rate_cents, 500)
    self.assertEqual(shipping_service.select_tier(tiers, 250).rate_cents, 700)

  def test_no_tiers(self):
    self.assertIsNone(shipping_service.select_tier([], 100))


class UnitWeightTest(absltest.TestCase):

  def test_weight_precedence(self):
    product = testing_db.make_product(
        "A", weight_g=10.0, weight_oz=1.0, weight_grams=30, volume_ml=40.0
    )
    self.assertEqual(shipping_service.unit_weight_grams(product), 10.0)
    product.weight_g = None
    self.assertAlmostEqual(
        shipping_service.unit_weight_grams(product), 28.3495
    )
    product.weight_oz = None
    self.assertEqual(shipping_service.unit_weight_grams(product), 30.0)
    product.weight_grams = None
    self.assertEqual(shipping_service.unit_weight_grams(product), 40.0)
    product.volume_ml = None
    self.assertEqual(shipping_service.unit_weight_grams(product), 0.0)

  def test_line_weight(self):
    shippable = testing_db.make_product("A")
    self.assertEqual(shipping_service.line_weight_grams(shippable, 3), 750)
    digital = testing_db.make_product(
        "B", requires_shipping=False, weight_g=500.0
    )
    self.assertEqual(shipping_service.line_weight_grams(digital, 3), 0)


class ShippingServiceTest(testing_db.StorefrontTestCase):

  def setUp(self):
    super().setUp()
    self.service = ShippingService(home_country="US")

  def quote(self, lines, **kwargs):
    return self.run_in_session(
        lambda session: self.service.calculate(session, lines, **kwargs)
    )

  def test_zone_tier_rate(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("US", ["US"], US_TIERS, free_shipping_min=7500)

    quote = self.quote([CartLine(product_id="A", quantity=2)], country="US")

    self.assertEqual(quote.total_weight_grams, 200)
    self.assertEqual(quote.subtotal_cents, 2000)
    self.assertEqual(quote.shipping_cents, 450)
    self.assertEqual(quote.zone_name, "US")
    self.assertEqual(quote.free_shipping_threshold, 7500)
    self.assertTrue(quote.requires_shipping)

  def test_country_defaults_to_home_and_is_uppercased(self):
    self.add_products(testing_db.make_product("A", weight_g=300.0))
    self.add_zone("US", ["US"], US_TIERS)

    self.assertEqual(
        self.quote([CartLine(product_id="A", quantity=1)]).zone_name, "US"
    )
    quote = self.quote([CartLine(product_id="A", quantity=1)], country="us")
    self.assertEqual(quote.zone_name, "US")
    self.assertEqual(quote.shipping_cents, 875)

  def test_weight_above_every_tier_uses_top_tier(self):
    self.add_products(testing_db.make_product("A", weight_g=5000.0))
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([CartLine(product_id="A", quantity=2)])

    self.assertEqual(quote.total_weight_grams, 10000)
    self.assertEqual(quote.shipping_cents, 875)

  def test_ounces_are_converted_and_rounded(self):
    self.add_products(testing_db.make_product("A", weight_oz=5.0))
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([CartLine(product_id="A", quantity=2)])

    # 10 oz = 283.495 g
    self.assertEqual(quote.total_weight_grams, 283)
    self.assertEqual(quote.shipping_cents, 875)

  def test_shippable_product_without_weight_counts_default(self):
    self.add_products(testing_db.make_product("A"))
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([CartLine(product_id="A", quantity=2)])

    self.assertEqual(quote.total_weight_grams, 500)
    self.assertEqual(quote.shipping_cents, 875)

  def test_non_shippable_products_add_no_weight(self):
    self.add_products(
        testing_db.make_product("A", weight_g=100.0),
        testing_db.make_product("B", requires_shipping=False, weight_g=900.0),
    )
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([
        CartLine(product_id="A", quantity=1),
        CartLine(product_id="B", quantity=5),
    ])

    self.assertEqual(quote.total_weight_grams, 100)
    self.assertEqual(quote.subtotal_cents, 6000)

  def test_fallback_schedule_without_matching_zone(self):
    self.add_products(testing_db.make_product("A", weight_g=400.0))
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([CartLine(product_id="A", quantity=1)], country="FR")

    self.assertEqual(quote.zone_name, shipping_service.DEFAULT_ZONE_NAME)
    self.assertEqual(quote.shipping_cents, 875)
    self.assertEqual(
        quote.free_shipping_threshold,
        shipping_service.FALLBACK_FREE_SHIPPING_MIN,
    )

  def test_fallback_heavy_rate(self):
    self.add_products(testing_db.make_product("A", weight_g=800.0))
    quote = self.quote([CartLine(product_id="A", quantity=1)])
    self.assertEqual(quote.shipping_cents, 1200)

  def test_zero_weight_uses_floor_on_fallback_only(self):
    self.add_products(
        testing_db.make_product("D", requires_shipping=False, price_cents=500)
    )

    fallback = self.quote([CartLine(product_id="D", quantity=1)], country="FR")
    self.assertEqual(fallback.total_weight_grams, 250)
    self.assertEqual(fallback.shipping_cents, 450)
    self.assertFalse(fallback.requires_shipping)

    self.add_zone("US", ["US"], [(1, 250, 300), (251, 750, 875)])
    zoned = self.quote([CartLine(product_id="D", quantity=1)], country="US")
    self.assertEqual(zoned.total_weight_grams, 0)
    # Below the first tier takes the next tier up.
    self.assertEqual(zoned.shipping_cents, 300)

  def test_disabled_zone_is_ignored(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("US", ["US"], [(0, 1000, 999)], enabled=False)

    quote = self.quote([CartLine(product_id="A", quantity=1)])

    self.assertEqual(quote.zone_name, shipping_service.DEFAULT_ZONE_NAME)
    self.assertEqual(quote.shipping_cents, 450)

  def test_zone_without_tiers_is_free(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("US", ["US"], [])

    self.assertEqual(
        self.quote([CartLine(product_id="A", quantity=1)]).shipping_cents, 0
    )

  def test_most_specific_zone_wins(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("North America", ["US", "CA", "MX"], [(0, 1000, 2000)])
    self.add_zone("United States", ["US"], [(0, 1000, 500)])

    quote = self.quote([CartLine(product_id="A", quantity=1)])

    self.assertEqual(quote.zone_name, "United States")
    self.assertEqual(quote.shipping_cents, 500)

  def test_equally_specific_zones_use_creation_order(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("First", ["US"], [(0, 1000, 111)])
    self.add_zone("Second", ["US"], [(0, 1000, 222)])

    for _ in range(3):
      quote = self.quote([CartLine(product_id="A", quantity=1)])
      self.assertEqual(quote.zone_name, "First")

  def test_free_shipping_override(self):
    self.add_products(
        testing_db.make_product("A", weight_g=100.0, price_cents=2500)
    )
    self.add_zone("US", ["US"], US_TIERS, free_shipping_min=7500)

    below = self.quote([CartLine(product_id="A", quantity=2)])
    self.assertEqual(below.subtotal_cents, 5000)
    self.assertEqual(below.shipping_cents, 450)

    at = self.quote([CartLine(product_id="A", quantity=3)])
    self.assertEqual(at.subtotal_cents, 7500)
    self.assertEqual(at.shipping_cents, 0)

    above = self.quote([CartLine(product_id="A", quantity=8)])
    self.assertEqual(above.shipping_cents, 0)

  def test_fallback_free_shipping_override(self):
    self.add_products(
        testing_db.make_product("A", weight_g=900.0, price_cents=8000)
    )
    quote = self.quote([CartLine(product_id="A", quantity=1)])
    self.assertEqual(quote.shipping_cents, 0)

  def test_missing_products_are_skipped(self):
    self.add_products(testing_db.make_product("A", weight_g=100.0))
    self.add_zone("US", ["US"], US_TIERS)

    quote = self.quote([
        CartLine(product_id="A", quantity=1),
        CartLine(product_id="ghost", quantity=5),
    ])

    self.assertEqual(quote.total_weight_grams, 100)
    self.assertEqual(quote.subtotal_cents, 1000)
    self.assertNotIn("ghost", quote.products)

  def test_missing_products_raise_when_strict(self):
    self.add_products(testing_db.make_product("A"))
    with self.assertRaises(ProductNotFoundError) as cm:
      self.quote(
          [
              CartLine(product_id="A", quantity=1),
              CartLine(product_id="ghost", quantity=1),
          ],
          strict=True,
      )
    self.assertEqual(cm.exception.product_id, "ghost")

  def test_default_zone_is_seeded_once(self):
    self.assertTrue(self.run_in_session(db.ensure_default_shipping_zone))
    self.assertFalse(self.run_in_session(db.ensure_default_shipping_zone))
    self.add_products(testing_db.make_product("A", weight_g=900.0))

    quote = self.quote([CartLine(product_id="A", quantity=1)])

    self.assertEqual(quote.zone_name, db.DEFAULT_ZONE_NAME)
    self.assertEqual(quote.shipping_cents, 1200)
    self.assertEqual(quote.free_shipping_threshold, 7500)

  def test_inactive_products_missing_when_active_only(self):
    self.add_products(testing_db.make_product("A", active=False))
    lines = [CartLine(product_id="A", quantity=1)]

    self.assertEqual(self.quote(lines).subtotal_cents, 1000)
    with self.assertRaises(ProductNotFoundError):
      self.quote(lines, strict=True, active_only=True)


if __name__ == "__main__":
  absltest.main()
