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

"""Database management and persistence layer for the storefront server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite) and keeps the catalog, shipping configuration and orders
in one database so that stock reservation and order creation share a single
transaction.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Enables SQLite Write-Ahead Logging to support concurrent access
  from request handlers and operator scripts.
- Foreign keys: Every SQLite connection enables `PRAGMA foreign_keys` so the
  restrict and cascade rules between orders, products and zones hold.
- Declarative Models: Defines tables for products, product groups, shipping
  zones, weight tiers and orders.
- Data Access Helpers: A suite of asynchronous functions used by the services.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
import uuid

from sqlalchemy import Boolean
from sqlalchemy import CheckConstraint
from sqlalchemy import Column
from sqlalchemy import event
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_ZONE_NAME = "United States"


def _now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _new_id() -> str:
  return str(uuid.uuid4())


def create_engine(url: str) -> AsyncEngine:
  """Creates an async engine, enabling foreign keys on SQLite connections."""
  engine = create_async_engine(url, echo=False)
  if url.startswith("sqlite"):

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
      del connection_record  # Unused.
      cursor = dbapi_connection.cursor()
      cursor.execute("PRAGMA foreign_keys=ON")
      cursor.close()

  return engine


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
  return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_path: str) -> None:
    """Initializes the database engine and creates tables."""
    self.engine = create_engine(f"sqlite+aiosqlite:///{database_path}")

    # Enable WAL mode
    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = create_session_factory(self.engine)

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class ProductGroup(Base):
  __tablename__ = "product_groups"

  id = Column(String, primary_key=True, default=_new_id)
  name = Column(String, nullable=False)
  handle = Column(String, unique=True, nullable=False)
  active = Column(Boolean, nullable=False, default=True)


class Product(Base):
  __tablename__ = "products"
  __table_args__ = (
      CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
  )

  id = Column(String, primary_key=True)
  name = Column(String, nullable=False)
  sku = Column(String, unique=True, nullable=False)
  price_cents = Column(Integer, nullable=False)  # Price in cents
  currency = Column(String, nullable=False, default="usd")
  stock = Column(Integer, nullable=False, default=0)
  active = Column(Boolean, nullable=False, default=True)
  requires_shipping = Column(Boolean, nullable=False, default=True)
  weight_g = Column(Float, nullable=True)
  weight_oz = Column(Float, nullable=True)
  weight_grams = Column(Integer, nullable=True)  # Legacy whole-gram weight
  volume_ml = Column(Float, nullable=True)
  length_mm = Column(Integer, nullable=True)
  width_mm = Column(Integer, nullable=True)
  height_mm = Column(Integer, nullable=True)
  group_id = Column(
      String,
      ForeignKey("product_groups.id", ondelete="CASCADE"),
      nullable=True,
  )
  variant_name = Column(String, nullable=True)
  created_at = Column(String, default=_now)
  updated_at = Column(String, default=_now, onupdate=_now)


class ShippingZone(Base):
  __tablename__ = "shipping_zones"

  id = Column(String, primary_key=True, default=_new_id)
  name = Column(String, nullable=False)
  # SQLAlchemy JSON type handles serialization automatically
  countries = Column(JSON, nullable=False, default=list)
  enabled = Column(Boolean, nullable=False, default=True, index=True)
  free_shipping_min = Column(Integer, nullable=True)  # In cents
  created_at = Column(String, default=_now)
  updated_at = Column(String, default=_now, onupdate=_now)

  weight_tiers = relationship(
      "WeightTier",
      back_populates="zone",
      cascade="all, delete-orphan",
      order_by="WeightTier.min_weight_g",
      lazy="selectin",
  )


class WeightTier(Base):
  __tablename__ = "weight_tiers"

  id = Column(String, primary_key=True, default=_new_id)
  zone_id = Column(
      String,
      ForeignKey("shipping_zones.id", ondelete="CASCADE"),
      nullable=False,
      index=True,
  )
  min_weight_g = Column(Integer, nullable=False)
  max_weight_g = Column(Integer, nullable=False)
  rate_cents = Column(Integer, nullable=False)

  zone = relationship("ShippingZone", back_populates="weight_tiers")


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True, default=_new_id)
  stripe_session_id = Column(String, unique=True, nullable=False)
  payment_intent_id = Column(String, nullable=True)
  status = Column(String, nullable=False)
  product_id = Column(
      String, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
  )
  sku = Column(String, nullable=False)
  quantity = Column(Integer, nullable=False)
  email = Column(String, nullable=True, index=True)
  phone = Column(String, nullable=True)
  shipping_name = Column(String, nullable=True)
  shipping_line1 = Column(String, nullable=True)
  shipping_line2 = Column(String, nullable=True)
  shipping_city = Column(String, nullable=True)
  shipping_state = Column(String, nullable=True)
  shipping_postal = Column(String, nullable=True)
  shipping_country = Column(String, nullable=True)
  amount_total = Column(Integer, nullable=False)
  currency = Column(String, nullable=False)
  items = Column(JSON, nullable=False, default=list)
  created_at = Column(String, default=_now, index=True)

  product = relationship("Product", lazy="selectin")


# --- Data Access Helpers ---


async def get_products_by_ids(
    session: AsyncSession, product_ids: Iterable[str], active_only: bool = False
) -> Dict[str, Product]:
  """Retrieves products by ID in a single query.

  Args:
    session: The database session to use.
    product_ids: The product IDs to look up.
    active_only: Whether inactive products should be treated as absent.

  Returns:
    A mapping of product ID to Product for every product that was found.
  """
  stmt = select(Product).where(Product.id.in_(list(product_ids)))
  if active_only:
    stmt = stmt.where(Product.active.is_(True))
  result = await session.execute(stmt)
  return {p.id: p for p in result.scalars().all()}


async def get_product_sku(
    session: AsyncSession, product_id: str
) -> Optional[str]:
  """Reads a product's current SKU straight from the database."""
  result = await session.execute(
      select(Product.sku).where(Product.id == product_id)
  )
  return result.scalar_one_or_none()


async def get_stock(session: AsyncSession, product_id: str) -> Optional[int]:
  """Retrieves the on-hand stock for a product."""
  result = await session.execute(
      select(Product.stock).where(Product.id == product_id)
  )
  return result.scalar_one_or_none()


async def reserve_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> bool:
  """Atomically decrements stock if sufficient stock exists."""
  stmt = (
      update(Product)
      .where(Product.id == product_id)
      .where(Product.stock >= quantity)
      .values(stock=Product.stock - quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount == 1


async def get_enabled_zones_for_country(
    session: AsyncSession, country: str
) -> List[ShippingZone]:
  """Retrieves enabled shipping zones that list the given country.

  Zones are returned most specific first (fewest countries), then in creation
  order, so callers taking the first entry get a deterministic match.

  Args:
    session: The database session to use.
    country: The uppercased ISO country code.

  Returns:
    The matching zones, best match first.
  """
  result = await session.execute(
      select(ShippingZone).where(ShippingZone.enabled.is_(True))
  )
  zones = [
      zone
      for zone in result.scalars().all()
      if country in [str(c).upper() for c in (zone.countries or [])]
  ]
  zones.sort(key=lambda z: (len(z.countries), z.created_at or "", z.id))
  return zones


async def list_shipping_zones(session: AsyncSession) -> List[ShippingZone]:
  """Retrieves all shipping zones ordered by name."""
  result = await session.execute(
      select(ShippingZone).order_by(ShippingZone.name)
  )
  return list(result.scalars().all())


async def get_shipping_zone(
    session: AsyncSession, zone_id: str
) -> Optional[ShippingZone]:
  """Retrieves a shipping zone with its weight tiers."""
  return await session.get(ShippingZone, zone_id)


async def save_shipping_zone(
    session: AsyncSession,
    zone_id: Optional[str],
    zone_data: Dict[str, Any],
    tiers: Optional[List[Dict[str, int]]] = None,
) -> ShippingZone:
  """Creates or updates a shipping zone.

  Args:
    session: The database session.
    zone_id: The zone to update, or None to create a new zone.
    zone_data: Zone columns ('name', 'countries', 'enabled',
      'free_shipping_min') to set.
    tiers: When given, replaces every weight tier of the zone.

  Returns:
    The saved zone.
  """
  zone = await session.get(ShippingZone, zone_id) if zone_id else None
  if zone is None:
    zone = ShippingZone(id=zone_id or _new_id(), weight_tiers=[])
    session.add(zone)

  for key, value in zone_data.items():
    setattr(zone, key, value)

  if tiers is not None:
    zone.weight_tiers = [
        WeightTier(
            min_weight_g=t["min_weight_g"],
            max_weight_g=t["max_weight_g"],
            rate_cents=t["rate_cents"],
        )
        for t in sorted(tiers, key=lambda t: t["min_weight_g"])
    ]
  await session.flush()
  return zone


async def ensure_default_shipping_zone(session: AsyncSession) -> bool:
  """Creates the default US zone if it is missing.

  Returns:
    True if the zone was created.
  """
  result = await session.execute(
      select(ShippingZone.id).where(ShippingZone.name == DEFAULT_ZONE_NAME)
  )
  if result.first():
    return False

  await save_shipping_zone(
      session,
      None,
      {
          "name": DEFAULT_ZONE_NAME,
          "countries": ["US"],
          "enabled": True,
          "free_shipping_min": 7500,
      },
      [
          {"min_weight_g": 0, "max_weight_g": 250, "rate_cents": 450},
          {"min_weight_g": 251, "max_weight_g": 750, "rate_cents": 875},
          {"min_weight_g": 751, "max_weight_g": 2000, "rate_cents": 1200},
          {"min_weight_g": 2001, "max_weight_g": 10000, "rate_cents": 1800},
      ],
  )
  await session.commit()
  return True


async def insert_order(session: AsyncSession, **fields: Any) -> Order:
  """Adds a new order and flushes it so key violations surface here."""
  order = Order(**fields)
  session.add(order)
  await session.flush()
  return order


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order by ID."""
  return await session.get(Order, order_id)


async def get_order_by_session_id(
    session: AsyncSession, stripe_session_id: str
) -> Optional[Order]:
  """Retrieves an order by its idempotency key."""
  result = await session.execute(
      select(Order).where(Order.stripe_session_id == stripe_session_id)
  )
  return result.scalar_one_or_none()


async def list_orders(session: AsyncSession) -> List[Order]:
  """Retrieves all orders, newest first."""
  result = await session.execute(
      select(Order).order_by(Order.created_at.desc())
  )
  return list(result.scalars().all())
