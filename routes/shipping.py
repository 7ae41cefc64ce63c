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

"""Shipping quote and shipping zone routes for the storefront server."""

import logging
from typing import Any

import db
import dependencies
from exceptions import InvalidCartError
from exceptions import ResourceNotFoundError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi.responses import JSONResponse
from models import ShippingQuoteRequest
from models import ShippingQuoteResponse
from models import ShippingZoneRequest
from models import ShippingZoneResponse
from services.cart_service import normalize_cart
from services.shipping_service import ShippingService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/shipping/calculate",
    response_model=ShippingQuoteResponse,
    operation_id="calculate_shipping",
)
async def calculate_shipping(
    quote_request: ShippingQuoteRequest = Body(...),
    session: AsyncSession = Depends(dependencies.get_db),
    shipping_service: ShippingService = Depends(
        dependencies.get_shipping_service
    ),
) -> Any:
  """Quotes shipping for a cart.

  Unknown and inactive products are left out of the quote.
  """
  try:
    lines = normalize_cart(quote_request.items)
  except InvalidCartError as e:
    return JSONResponse(status_code=400, content={"error": e.message})

  try:
    quote = await shipping_service.calculate(
        session, lines, country=quote_request.country, active_only=True
    )
  except Exception:  # pylint: disable=broad-exception-caught
    logger.exception("Shipping calculation failed")
    return JSONResponse(
        status_code=500, content={"error": "Failed to calculate shipping"}
    )

  return ShippingQuoteResponse(
      shipping_cents=quote.shipping_cents,
      total_weight_grams=quote.total_weight_grams,
      free_shipping_threshold=quote.free_shipping_threshold,
      zone_name=quote.zone_name,
  )


@router.get(
    "/api/admin/shipping",
    operation_id="get_shipping_config",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def get_shipping_config(
    session: AsyncSession = Depends(dependencies.get_db),
) -> dict[str, Any]:
  """Lists every shipping zone with its weight tiers."""
  zones = await db.list_shipping_zones(session)
  return {
      "zones": [
          ShippingZoneResponse.from_zone(zone).model_dump(
              mode="json", by_alias=True
          )
          for zone in zones
      ]
  }


def _zone_columns(zone_request: ShippingZoneRequest) -> dict[str, Any]:
  return {
      "name": zone_request.name,
      "countries": zone_request.countries,
      "enabled": zone_request.enabled,
      "free_shipping_min": zone_request.free_shipping_min,
  }


def _tier_rows(zone_request: ShippingZoneRequest):
  if zone_request.weight_tiers is None:
    return None
  return [tier.model_dump() for tier in zone_request.weight_tiers]


@router.post(
    "/api/admin/shipping/zones",
    response_model=ShippingZoneResponse,
    status_code=201,
    operation_id="create_shipping_zone",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def create_shipping_zone(
    zone_request: ShippingZoneRequest = Body(...),
    session: AsyncSession = Depends(dependencies.get_db),
) -> Any:
  """Creates a shipping zone."""
  zone = await db.save_shipping_zone(
      session,
      None,
      _zone_columns(zone_request),
      _tier_rows(zone_request) or [],
  )
  await session.commit()
  logger.info("Created shipping zone %s (%s)", zone.id, zone.name)
  return ShippingZoneResponse.from_zone(zone)


@router.put(
    "/api/admin/shipping/zones/{id}",
    response_model=ShippingZoneResponse,
    operation_id="update_shipping_zone",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def update_shipping_zone(
    zone_id: str = Path(..., alias="id"),
    zone_request: ShippingZoneRequest = Body(...),
    session: AsyncSession = Depends(dependencies.get_db),
) -> Any:
  """Updates a shipping zone, replacing its tiers when tiers are given."""
  if await db.get_shipping_zone(session, zone_id) is None:
    raise ResourceNotFoundError("Shipping zone not found")

  zone = await db.save_shipping_zone(
      session, zone_id, _zone_columns(zone_request), _tier_rows(zone_request)
  )
  await session.commit()
  logger.info("Updated shipping zone %s (%s)", zone.id, zone.name)
  return ShippingZoneResponse.from_zone(zone)
