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

"""Admin order routes for the storefront server."""

import db
import dependencies
from exceptions import ResourceNotFoundError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from models import ManualOrderRequest
from models import OrderSnapshot
from services.manual_order_service import ManualOrderService
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.get(
    "/api/admin/orders",
    response_model=list[OrderSnapshot],
    operation_id="list_orders",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def list_orders(
    session: AsyncSession = Depends(dependencies.get_db),
) -> list[OrderSnapshot]:
  """List orders, newest first."""
  orders = await db.list_orders(session)
  return [OrderSnapshot.from_order(order) for order in orders]


@router.get(
    "/api/admin/orders/{id}",
    response_model=OrderSnapshot,
    operation_id="get_order",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    session: AsyncSession = Depends(dependencies.get_db),
) -> OrderSnapshot:
  """Get an order by ID."""
  order = await db.get_order(session, order_id)
  if order is None:
    raise ResourceNotFoundError("Order not found")
  return OrderSnapshot.from_order(order)


@router.post(
    "/api/admin/orders/manual",
    response_model=OrderSnapshot,
    status_code=201,
    operation_id="create_manual_order",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def create_manual_order(
    order_request: ManualOrderRequest = Body(...),
    session: AsyncSession = Depends(dependencies.get_db),
    manual_order_service: ManualOrderService = Depends(
        dependencies.get_manual_order_service
    ),
) -> OrderSnapshot:
  """Record an order taken outside the payment provider."""
  return await manual_order_service.create_order(session, order_request)
