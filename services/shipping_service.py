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

"""Shipping service for pricing carts and calculating shipping costs.

This module encapsulates the logic for computing a cart's subtotal, its
shipment weight, the matching shipping zone and weight tier, and the
free-shipping override. Quoting, manual orders and webhook fulfillment all
price carts through `ShippingService.calculate`.
"""

import dataclasses
import logging
from typing import Any, Dict, Optional, Sequence

import db
from exceptions import ProductNotFoundError
from models import CartLine
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

OUNCE_IN_GRAMS = 28.3495
# Assumed weight of one unit of a shippable product with no weight data.
DEFAULT_ITEM_WEIGHT_G = 250
DEFAULT_ZONE_NAME = "Default"

# Used when no enabled zone lists the destination country.
FALLBACK_MIN_WEIGHT_G = 250
FALLBACK_RATES = ((250, 450), (750, 875))
FALLBACK_TOP_RATE_CENTS = 1200
FALLBACK_FREE_SHIPPING_MIN = 7500


@dataclasses.dataclass
class ShippingQuote:
  """Result of pricing a cart for one destination."""

  subtotal_cents: int
  shipping_cents: int
  total_weight_grams: int
  free_shipping_threshold: Optional[int]
  zone_name: str
  requires_shipping: bool
  products: Dict[str, db.Product] = dataclasses.field(default_factory=dict)


def unit_weight_grams(product: db.Product) -> float:
  """Returns the most precise per-unit weight recorded for a product.

  Explicit grams win over ounces, ounces over the legacy whole-gram field, and
  any of those over volume (1 ml is taken as 1 g). Zero counts as unset.
  """
  if product.weight_g:
    return float(product.weight_g)
  if product.weight_oz:
    return product.weight_oz * OUNCE_IN_GRAMS
  if product.weight_grams:
    return float(product.weight_grams)
  if product.volume_ml:
    return float(product.volume_ml)
  return 0.0


def line_weight_grams(product: db.Product, quantity: int) -> float:
  if not product.requires_shipping:
    return 0.0
  return (unit_weight_grams(product) or DEFAULT_ITEM_WEIGHT_G) * quantity


def select_tier(tiers: Sequence[Any], weight_g: int) -> Optional[Any]:
  """Picks the weight tier that prices a shipment.

  The first tier whose [min, max] range holds the weight wins. A weight above
  every maximum takes the tier with the highest maximum; a weight in a gap
  between tiers, or below the first one, takes the next tier up.

  Args:
    tiers: Objects with min_weight_g, max_weight_g and rate_cents.
    weight_g: Whole-gram shipment weight.

  Returns:
    The selected tier, or None when there are no tiers.
  """
  if not tiers:
    return None
  ordered = sorted(tiers, key=lambda t: (t.min_weight_g, t.max_weight_g))
  for tier in ordered:
    if tier.min_weight_g <= weight_g <= tier.max_weight_g:
      return tier

  top = max(ordered, key=lambda t: t.max_weight_g)
  if weight_g > top.max_weight_g:
    return top
  return next(t for t in ordered if t.max_weight_g >= weight_g)


def fallback_rate_cents(weight_g: int) -> int:
  for max_weight, rate in FALLBACK_RATES:
    if weight_g <= max_weight:
      return rate
  return FALLBACK_TOP_RATE_CENTS


class ShippingService:
  """Service for pricing carts and their shipment."""

  def __init__(self, home_country: str = "US"):
    self.home_country = home_country.upper()

  async def calculate(
      self,
      session: AsyncSession,
      lines: Sequence[CartLine],
      country: Optional[str] = None,
      strict: bool = False,
      active_only: bool = False,
  ) -> ShippingQuote:
    """Prices normalized cart lines for a destination country.

    Args:
      session: The database session to read products and zones from.
      lines: Normalized cart lines.
      country: ISO destination country; defaults to the home country.
      strict: Raise for missing products instead of skipping them.
      active_only: Treat inactive products as missing.

    Returns:
      The computed ShippingQuote.

    Raises:
      ProductNotFoundError: If `strict` and a line's product is missing.
    """
    products = await db.get_products_by_ids(
        session, [line.product_id for line in lines], active_only=active_only
    )

    subtotal = 0
    weight = 0.0
    requires_shipping = False
    for line in lines:
      product = products.get(line.product_id)
      if product is None:
        if strict:
          raise ProductNotFoundError(line.product_id)
        logger.info("Skipping unknown product %s in quote", line.product_id)
        continue
      subtotal += product.price_cents * line.quantity
      weight += line_weight_grams(product, line.quantity)
      requires_shipping = requires_shipping or bool(product.requires_shipping)

    weight_g = round(weight)
    target_country = (country or self.home_country).strip().upper()
    target_country = target_country or self.home_country

    zones = await db.get_enabled_zones_for_country(session, target_country)
    if zones:
      zone = zones[0]
      if len(zones) > 1:
        logger.warning(
            "Country %s matches %d zones; using %s",
            target_country,
            len(zones),
            zone.name,
        )
      zone_name = zone.name
      threshold = zone.free_shipping_min
      tier = select_tier(zone.weight_tiers, weight_g)
      shipping = tier.rate_cents if tier else 0
    else:
      # The floor only applies to the fallback schedule.
      if weight_g == 0:
        weight_g = FALLBACK_MIN_WEIGHT_G
      zone_name = DEFAULT_ZONE_NAME
      threshold = FALLBACK_FREE_SHIPPING_MIN
      shipping = fallback_rate_cents(weight_g)

    if threshold and subtotal >= threshold:
      shipping = 0

    logger.info(
        "Quoted %d cents shipping for %d g to %s (zone: %s)",
        shipping,
        weight_g,
        target_country,
        zone_name,
    )
    return ShippingQuote(
        subtotal_cents=subtotal,
        shipping_cents=shipping,
        total_weight_grams=weight_g,
        free_shipping_threshold=threshold,
        zone_name=zone_name,
        requires_shipping=requires_shipping,
        products=products,
    )
