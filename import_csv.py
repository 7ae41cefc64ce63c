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

"""Database initialization script for the storefront server.

This script imports catalog and shipping data from CSV files into the
configured SQLite database. Products are upserted by ID so that orders keep
their product references; shipping zones and weight tiers are replaced.

Usage:
  uv run import_csv.py --database_path=... --data_dir=...
"""

import asyncio
import collections
import csv
import logging
import os
from typing import Any, Optional
from absl import app as absl_app
from absl import flags
import db
from db import Product
from db import ShippingZone
from db import WeightTier
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("database_path", "storefront.db", "Path to the DB")
except flags.DuplicateFlagError:
  pass
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing products.csv, shipping_zones.csv and"
    " weight_tiers.csv",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _optional_float(value: Optional[str]) -> Optional[float]:
  return float(value) if value not in (None, "") else None


def _optional_int(value: Optional[str]) -> Optional[int]:
  return int(value) if value not in (None, "") else None


def _flag(value: Optional[str], default: bool = True) -> bool:
  if value in (None, ""):
    return default
  return value.strip().lower() in ("1", "true", "yes", "y")


def _read_rows(data_dir: str, filename: str) -> list[dict[str, Any]]:
  path = os.path.join(data_dir, filename)
  if not os.path.exists(path):
    logger.info("Skipping missing %s", filename)
    return []
  with open(path, "r", encoding="utf-8") as f:
    return list(csv.DictReader(f))


async def import_csv_data(session: AsyncSession, data_dir: str) -> None:
  """Reads CSV files from `data_dir` and populates the database."""
  logger.info("Importing Products from CSV...")
  for row in _read_rows(data_dir, "products.csv"):
    await session.merge(
        Product(
            id=row["id"],
            name=row["name"],
            sku=row["sku"],
            price_cents=int(row["price_cents"]),
            currency=(row.get("currency") or "usd").lower(),
            stock=int(row.get("stock") or 0),
            active=_flag(row.get("active")),
            requires_shipping=_flag(row.get("requires_shipping")),
            weight_g=_optional_float(row.get("weight_g")),
            weight_oz=_optional_float(row.get("weight_oz")),
            weight_grams=_optional_int(row.get("weight_grams")),
            volume_ml=_optional_float(row.get("volume_ml")),
        )
    )

  zone_rows = _read_rows(data_dir, "shipping_zones.csv")
  if zone_rows:
    logger.info("Clearing existing shipping zones...")
    await session.execute(delete(WeightTier))
    await session.execute(delete(ShippingZone))

    tiers_by_zone = collections.defaultdict(list)
    for row in _read_rows(data_dir, "weight_tiers.csv"):
      tiers_by_zone[row["zone_id"]].append(
          WeightTier(
              min_weight_g=int(row["min_weight_g"]),
              max_weight_g=int(row["max_weight_g"]),
              rate_cents=int(row["rate_cents"]),
          )
      )

    logger.info("Importing Shipping Zones from CSV...")
    for row in zone_rows:
      session.add(
          ShippingZone(
              id=row["id"],
              name=row["name"],
              # Countries are separated by ';' within the CSV cell.
              countries=[
                  c.strip().upper()
                  for c in row.get("countries", "").split(";")
                  if c.strip()
              ],
              enabled=_flag(row.get("enabled")),
              free_shipping_min=_optional_int(row.get("free_shipping_min")),
              weight_tiers=tiers_by_zone.get(row["id"], []),
          )
      )

  await session.commit()
  logger.info("Database populated from CSVs.")


async def run_import() -> None:
  await db.manager.init_db(FLAGS.database_path)
  try:
    async with db.manager.session_factory() as session:
      await import_csv_data(session, FLAGS.data_dir)
  finally:
    await db.manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  asyncio.run(run_import())


if __name__ == "__main__":
  absl_app.run(main)
