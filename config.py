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

"""Shared configuration and startup logic for the storefront server."""

import contextlib
import logging
import uuid
from absl import flags
import db
from fastapi import FastAPI

FLAGS = flags.FLAGS

SERVER_VERSION = "0.1.0"

logger = logging.getLogger(__name__)

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports). The operator tools define database_path too.
try:
  flags.DEFINE_string("database_path", None, "Path to the storefront DB")
except flags.DuplicateFlagError:
  pass

try:
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "admin_secret",
      str(uuid.uuid4()),
      "Shared secret expected in the Admin-Secret header of admin endpoints",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      None,
      "Signing secret for Stripe webhooks. Webhooks are rejected when unset.",
  )
  flags.DEFINE_string(
      "stripe_api_key",
      None,
      "Stripe API key used to fetch checkout line items missing from events",
  )
  flags.DEFINE_string(
      "home_country", "US", "Destination country when a quote omits one"
  )
  flags.DEFINE_boolean(
      "seed_default_zone",
      True,
      "Create the default United States shipping zone on startup",
  )
except flags.DuplicateFlagError:
  pass


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing the database."""
  del app  # Unused.
  # In tests the flags may be unparsed; sessions are then injected directly.
  if FLAGS.is_parsed() and FLAGS.database_path:
    await db.manager.init_db(FLAGS.database_path)
    if FLAGS.seed_default_zone:
      async with db.manager.session_factory() as session:
        if await db.ensure_default_shipping_zone(session):
          logger.info("Created default shipping zone")
  yield
  await db.manager.close()
