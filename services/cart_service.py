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

"""Cart normalization for untrusted (product, quantity) input.

Carts arrive from webhook metadata, JSON request bodies and admin forms. This
module turns any of them into unique-by-product `CartLine`s with bounded
quantities, or raises `InvalidCartError` when nothing usable is left.
"""

import dataclasses
import math
from typing import Any, Iterable, Mapping, Optional

from exceptions import InvalidCartError
from models import CartLine


@dataclasses.dataclass(frozen=True)
class CartLimits:
  """Inclusive per-line quantity bounds applied after merging."""

  min_quantity: int
  max_quantity: int


CUSTOMER_LIMITS = CartLimits(min_quantity=1, max_quantity=10)
# Admin carts may exceed the storefront limit but stay bounded.
ADMIN_LIMITS = CartLimits(min_quantity=1, max_quantity=1000)


def coerce_quantity(value: Any) -> Optional[int]:
  """Coerces a raw quantity to a positive int, or None if unusable."""
  if isinstance(value, bool):
    return None
  if isinstance(value, int):
    quantity = value
  elif isinstance(value, float):
    if not math.isfinite(value):
      return None
    quantity = int(value)
  elif isinstance(value, str):
    text = value.strip()
    try:
      quantity = int(text)
    except ValueError:
      try:
        parsed = float(text)
      except ValueError:
        return None
      if not math.isfinite(parsed):
        return None
      quantity = int(parsed)
  else:
    return None
  return quantity if quantity > 0 else None


def _product_id(entry: Mapping[str, Any]) -> Optional[str]:
  product_id = entry.get("productId", entry.get("product_id"))
  if not isinstance(product_id, str):
    return None
  return product_id.strip() or None


def normalize_cart(
    raw_items: Optional[Iterable[Any]],
    limits: CartLimits = CUSTOMER_LIMITS,
) -> list[CartLine]:
  """Validates, merges and clamps raw cart entries.

  Args:
    raw_items: Entries shaped like {"productId": str, "quantity": int}. Entries
      may also be CartLine instances. Anything unusable is dropped.
    limits: Quantity bounds applied to each merged line.

  Returns:
    One CartLine per product.

  Raises:
    InvalidCartError: If no usable entry remains.
  """
  combined: dict[str, int] = {}
  for entry in raw_items or []:
    if isinstance(entry, CartLine):
      entry = entry.model_dump()
    if not isinstance(entry, Mapping):
      continue
    product_id = _product_id(entry)
    quantity = coerce_quantity(entry.get("quantity"))
    if product_id is None or quantity is None:
      continue
    combined[product_id] = combined.get(product_id, 0) + quantity

  if not combined:
    raise InvalidCartError("Cart must include productId and quantity > 0")

  return [
      CartLine(
          product_id=product_id,
          quantity=min(max(quantity, limits.min_quantity), limits.max_quantity),
      )
      for product_id, quantity in combined.items()
  ]
