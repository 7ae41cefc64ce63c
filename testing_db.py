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

"""Shared fixtures for tests that need a scratch storefront database."""

import asyncio
import os
import shutil
import tempfile
from typing import Any, Awaitable, Callable, List, Optional

from absl import flags
from absl.testing import absltest
import db
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

FLAGS = flags.FLAGS


def make_product(product_id: str, **overrides: Any) -> db.Product:
  """Builds a product with sensible defaults for tests."""
  fields = {
      "id": product_id,
      "name": f"Product {product_id}",
      "sku": f"SKU-{product_id}",
      "price_cents": 1000,
      "currency": "usd",
      "stock": 10,
      "active": True,
      "requires_shipping": True,
  }
  fields.update(overrides)
  return db.Product(**fields)


class StorefrontTestCase(absltest.TestCase):
  """Test case backed by a temporary SQLite database."""

  def setUp(self) -> None:
    super().setUp()
    # Under pytest the absl flags are never parsed; defaults are enough.
    if not FLAGS.is_parsed():
      FLAGS.mark_as_parsed()

    self.test_dir = tempfile.mkdtemp()
    self.db_path = os.path.join(self.test_dir, "test_storefront.db")
    self.engine = db.create_engine(f"sqlite+aiosqlite:///{self.db_path}")
    self.session_factory = db.create_session_factory(self.engine)

    async def init_schema() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)

    asyncio.run(init_schema())

  def tearDown(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def run_in_session(self, fn: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
    """Runs `fn` with a fresh session and returns its result."""

    async def run() -> Any:
      async with self.session_factory() as session:
        return await fn(session)

    return asyncio.run(run())

  def add_products(self, *products: db.Product) -> None:
    async def add(session: AsyncSession) -> None:
      session.add_all(products)
      await session.commit()

    self.run_in_session(add)

  def add_zone(
      self,
      name: str,
      countries: List[str],
      tiers: List[tuple[int, int, int]],
      free_shipping_min: Optional[int] = None,
      enabled: bool = True,
  ) -> str:
    """Creates a zone from (min_g, max_g, rate_cents) tiers; returns its ID."""

    async def add(session: AsyncSession) -> str:
      zone = await db.save_shipping_zone(
          session,
          None,
          {
              "name": name,
              "countries": countries,
              "enabled": enabled,
              "free_shipping_min": free_shipping_min,
          },
          [
              {"min_weight_g": lo, "max_weight_g": hi, "rate_cents": rate}
              for lo, hi, rate in tiers
          ],
      )
      await session.commit()
      return zone.id

    return self.run_in_session(add)

  def stock_of(self, product_id: str) -> Optional[int]:
    return self.run_in_session(lambda s: db.get_stock(s, product_id))

  def all_orders(self) -> List[db.Order]:
    async def fetch(session: AsyncSession) -> List[db.Order]:
      result = await session.execute(select(db.Order))
      return list(result.scalars().all())

    return self.run_in_session(fetch)
