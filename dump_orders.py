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

"""Utility script to dump stored orders.

This script reads from the configured SQLite database and prints a summary
of all stored orders, including their status, customer and line snapshot. It
is useful for debugging and verifying the state of the server.

Usage:
  uv run dump_orders.py --database_path=...
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import db
from models import OrderSnapshot

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("database_path", None, "Path to the storefront DB")
except flags.DuplicateFlagError:
  pass


def format_order(snapshot: OrderSnapshot) -> str:
  """Renders one order as a human-readable block."""
  lines = [
      f"Order: {snapshot.id} [{snapshot.status}]"
      f" session={snapshot.stripe_session_id}",
      f"  Customer: {snapshot.customer_name or '-'}"
      f" <{snapshot.email or 'no email'}>",
  ]
  for item in snapshot.items:
    price = item.price_cents / 100.0
    total = item.price_cents * item.quantity / 100.0
    lines.append(
        f"  - {item.product_name or 'Item'} (ID: {item.product_id})"
        f" x{item.quantity} @ {price:.2f} = {total:.2f}"
    )
  lines.append(
      f"  Total: {snapshot.total_cents / 100.0:.2f}"
      f" {snapshot.currency.upper()}"
  )
  return "\n".join(lines)


async def dump_orders():
  """Queries the database and prints all orders."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  engine = db.create_engine(f"sqlite+aiosqlite:///{FLAGS.database_path}")
  session_factory = db.create_session_factory(engine)

  try:
    async with session_factory() as session:
      orders = await db.list_orders(session)

      if not orders:
        print("No orders found.")
        return

      for order in orders:
        print(format_order(OrderSnapshot.from_order(order)))
        print("-" * 60)
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
