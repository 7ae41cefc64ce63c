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

"""Request, response and notification models for the storefront server.

Public JSON uses camelCase field names (`productId`, `shippingCents`); every
model also accepts snake_case on input. Payment notifications are modelled on
the Stripe `checkout.session` object and ignore fields the server does not
use.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from enums import CartSource
from enums import FulfillmentState
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
  """Base model exposing camelCase aliases."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartLine(CamelModel):
  """A normalized (product, quantity) pair."""

  model_config = ConfigDict(
      alias_generator=to_camel, populate_by_name=True, frozen=True
  )

  product_id: str
  quantity: int


# --- Shipping ---


class ShippingQuoteRequest(CamelModel):
  # Raw items are validated by the cart normalizer, not by pydantic.
  items: list[Any] = Field(default_factory=list)
  country: Optional[str] = None


class ShippingQuoteResponse(CamelModel):
  shipping_cents: int
  total_weight_grams: int
  free_shipping_threshold: Optional[int] = None
  zone_name: str


class WeightTierModel(CamelModel):
  """A weight bracket, in grams, mapped to a flat rate."""

  min_weight_g: int = Field(ge=0)
  max_weight_g: int = Field(ge=0)
  rate_cents: int = Field(ge=0)

  @model_validator(mode="after")
  def check_range(self) -> "WeightTierModel":
    if self.min_weight_g > self.max_weight_g:
      raise ValueError("minWeightG must not exceed maxWeightG")
    return self


class ShippingZoneRequest(CamelModel):
  name: str = Field(min_length=1)
  countries: list[str] = Field(default_factory=list)
  enabled: bool = True
  free_shipping_min: Optional[int] = Field(default=None, ge=0)
  weight_tiers: Optional[list[WeightTierModel]] = None

  @field_validator("countries")
  @classmethod
  def normalize_countries(cls, value: list[str]) -> list[str]:
    return [c.strip().upper() for c in value if c and c.strip()]

  @field_validator("free_shipping_min", mode="before")
  @classmethod
  def empty_threshold(cls, value: Any) -> Any:
    # The admin form sends 0 or "" to mean "no threshold".
    if value in ("", 0):
      return None
    return value

  @field_validator("weight_tiers")
  @classmethod
  def check_tiers(
      cls, value: Optional[list[WeightTierModel]]
  ) -> Optional[list[WeightTierModel]]:
    if value is None:
      return value
    ordered = sorted(value, key=lambda t: t.min_weight_g)
    for lower, upper in zip(ordered, ordered[1:]):
      if upper.min_weight_g <= lower.max_weight_g:
        raise ValueError(
            f"Weight tiers overlap: {lower.min_weight_g}-{lower.max_weight_g}"
            f" and {upper.min_weight_g}-{upper.max_weight_g}"
        )
    return ordered


class ShippingZoneResponse(CamelModel):
  id: str
  name: str
  countries: list[str]
  enabled: bool
  free_shipping_min: Optional[int] = None
  weight_tiers: list[WeightTierModel]

  @classmethod
  def from_zone(cls, zone: Any) -> "ShippingZoneResponse":
    return cls(
        id=zone.id,
        name=zone.name,
        countries=list(zone.countries or []),
        enabled=zone.enabled,
        free_shipping_min=zone.free_shipping_min,
        weight_tiers=[
            WeightTierModel(
                min_weight_g=t.min_weight_g,
                max_weight_g=t.max_weight_g,
                rate_cents=t.rate_cents,
            )
            for t in zone.weight_tiers
        ],
    )


# --- Payment notifications ---


class StripeAddress(BaseModel):
  line1: Optional[str] = None
  line2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  postal_code: Optional[str] = None
  country: Optional[str] = None


class ShippingDetails(BaseModel):
  name: Optional[str] = None
  address: Optional[StripeAddress] = None


class CustomerDetails(BaseModel):
  email: Optional[str] = None
  phone: Optional[str] = None
  name: Optional[str] = None


class ProviderLineItem(BaseModel):
  """A line item as the payment provider charged it."""

  description: Optional[str] = None
  quantity: Optional[int] = None
  amount_subtotal: Optional[int] = None
  amount_total: Optional[int] = None
  currency: Optional[str] = None


class ProviderLineItemList(BaseModel):
  data: list[ProviderLineItem] = Field(default_factory=list)


class CheckoutSessionNotification(BaseModel):
  """A completed Stripe checkout session."""

  model_config = ConfigDict(extra="ignore")

  id: str
  payment_status: Optional[str] = None
  payment_intent: Optional[str] = None
  customer_details: Optional[CustomerDetails] = None
  shipping_details: Optional[ShippingDetails] = None
  metadata: dict[str, Any] = Field(default_factory=dict)
  amount_total: Optional[int] = None
  currency: Optional[str] = None
  line_items: Optional[ProviderLineItemList] = None

  @model_validator(mode="before")
  @classmethod
  def lift_collected_shipping(cls, data: Any) -> Any:
    # Newer API versions nest shipping under collected_information.
    if isinstance(data, dict) and not data.get("shipping_details"):
      collected = data.get("collected_information") or {}
      if isinstance(collected, dict) and collected.get("shipping_details"):
        data = {**data, "shipping_details": collected["shipping_details"]}
    return data

  @field_validator("payment_intent", mode="before")
  @classmethod
  def payment_intent_id(cls, value: Any) -> Any:
    if isinstance(value, dict):
      return value.get("id")
    if value is not None and not isinstance(value, str):
      return str(value)
    return value

  @field_validator("metadata", mode="before")
  @classmethod
  def metadata_or_empty(cls, value: Any) -> Any:
    return value if isinstance(value, dict) else {}


class StripeEventData(BaseModel):
  object: dict[str, Any]


class StripeEvent(BaseModel):
  model_config = ConfigDict(extra="ignore")

  id: Optional[str] = None
  type: str
  data: StripeEventData


class StructuredCart(BaseModel):
  """Cart lines declared as JSON in the session's `items` metadata."""

  source: Literal[CartSource.STRUCTURED] = CartSource.STRUCTURED
  lines: list[CartLine]


class LegacyCart(BaseModel):
  """A single product declared with the flat productId/sku/quantity fields."""

  source: Literal[CartSource.LEGACY] = CartSource.LEGACY
  product_id: str
  sku: str
  quantity: int

  @property
  def lines(self) -> list[CartLine]:
    return [CartLine(product_id=self.product_id, quantity=self.quantity)]


DerivedCart = Annotated[
    Union[StructuredCart, LegacyCart], Field(discriminator="source")
]


class FulfillmentOutcome(BaseModel):
  """Where a notification ended up, and how it got there."""

  state: FulfillmentState
  transitions: list[FulfillmentState]
  order_id: Optional[str] = None
  cart_source: Optional[CartSource] = None
  reason: Optional[str] = None


# --- Manual orders ---


def _stripped(value: Any) -> str:
  return "" if value is None else str(value).strip()


class CustomerInfo(CamelModel):
  email: str = ""
  name: str = ""
  phone: str = ""

  @field_validator("email", "name", "phone", mode="before")
  @classmethod
  def strip_text(cls, value: Any) -> str:
    return _stripped(value)


class ShippingAddress(CamelModel):
  line1: str = ""
  line2: str = ""
  city: str = ""
  state: str = ""
  postal: str = ""
  country: str = ""

  @field_validator(
      "line1", "line2", "city", "state", "postal", "country", mode="before"
  )
  @classmethod
  def strip_text(cls, value: Any) -> str:
    return _stripped(value)

  def is_complete(self) -> bool:
    return all(
        [self.line1, self.city, self.state, self.postal, self.country]
    )


class ManualOrderRequest(CamelModel):
  items: list[Any] = Field(default_factory=list)
  customer: CustomerInfo = Field(default_factory=CustomerInfo)
  shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
  # Checked by the composer so form strings ("" or "499") are accepted.
  shipping_cents: Any = None
  status: Optional[str] = None

  @field_validator("customer", "shipping_address", mode="before")
  @classmethod
  def none_as_empty(cls, value: Any) -> Any:
    return {} if value is None else value


# --- Order snapshots ---


class OrderShipping(CamelModel):
  name: Optional[str] = None
  line1: Optional[str] = None
  line2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  postal: Optional[str] = None
  country: Optional[str] = None


class OrderLine(CamelModel):
  id: str
  order_id: str
  product_id: Optional[str] = None
  product_name: Optional[str] = None
  quantity: int
  price_cents: int


class OrderSnapshot(CamelModel):
  """Administrative view of an order."""

  id: str
  stripe_session_id: str
  payment_intent_id: Optional[str] = None
  status: str
  created_at: Optional[str] = None
  email: Optional[str] = None
  phone: Optional[str] = None
  customer_name: Optional[str] = None
  shipping: OrderShipping
  total_cents: int
  currency: str
  items: list[OrderLine]
  line_items_snapshot: list[dict[str, Any]]

  @classmethod
  def from_order(cls, order: Any) -> "OrderSnapshot":
    raw_items = order.items
    if isinstance(raw_items, str):
      try:
        raw_items = json.loads(raw_items or "[]")
      except json.JSONDecodeError:
        raw_items = []
    if not isinstance(raw_items, list):
      raw_items = []
    raw_items = [it for it in raw_items if isinstance(it, dict)]

    items = []
    for idx, it in enumerate(raw_items):
      qty = max(1, _as_int(it.get("quantity")) or 1)
      line_total = _as_int(
          it.get("amountSubtotal", it.get("amountTotal", 0))
      )
      name = str(it.get("description") or "Item")
      items.append(
          OrderLine(
              id=f"{order.id}_{idx}",
              order_id=order.id,
              product_id=str(it.get("productId") or it.get("sku") or name),
              product_name=name,
              quantity=qty,
              price_cents=round(line_total / qty),
          )
      )

    # Fallback for legacy or unreadable snapshots
    if not items:
      product = order.product
      items.append(
          OrderLine(
              id=f"{order.id}_0",
              order_id=order.id,
              product_id=order.product_id,
              product_name=product.name if product else None,
              quantity=order.quantity,
              price_cents=product.price_cents if product else 0,
          )
      )

    return cls(
        id=order.id,
        stripe_session_id=order.stripe_session_id,
        payment_intent_id=order.payment_intent_id,
        status=order.status,
        created_at=order.created_at,
        email=order.email,
        phone=order.phone,
        customer_name=order.shipping_name,
        shipping=OrderShipping(
            name=order.shipping_name,
            line1=order.shipping_line1,
            line2=order.shipping_line2,
            city=order.shipping_city,
            state=order.shipping_state,
            postal=order.shipping_postal,
            country=order.shipping_country,
        ),
        total_cents=order.amount_total,
        currency=order.currency,
        items=items,
        line_items_snapshot=raw_items,
    )


def _as_int(value: Any) -> int:
  try:
    return int(value or 0)
  except (TypeError, ValueError):
    return 0
