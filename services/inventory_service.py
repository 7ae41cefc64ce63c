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

"""Inventory service for reserving stock inside an order transaction."""

import logging
from typing import Sequence

import db
from exceptions import InsufficientStockError
from models import CartLine
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class InventoryService:
  """Service for decrementing stock with conditional updates."""

  async def reserve(
      self, session: AsyncSession, lines: Sequence[CartLine]
  ) -> None:
    """Reserves stock for every line in the session's open transaction.

    Each line is a single conditional UPDATE, so two concurrent reservations
    of the last unit cannot both succeed. Lines are reserved in order and a
    multi-line cart is only as isolated as the enclosing transaction.

    The caller owns the transaction: it commits once the order row is in
    place and rolls back if this raises, restoring every earlier line.

    Args:
      session: The session whose transaction holds the reservation.
      lines: Normalized cart lines.

    Raises:
      InsufficientStockError: If any line cannot be covered.
    """
    for line in lines:
      if not await db.reserve_stock(session, line.product_id, line.quantity):
        logger.info(
            "Insufficient stock for %s (requested %d)",
            line.product_id,
            line.quantity,
        )
        raise InsufficientStockError(line.product_id)
