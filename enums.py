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

"""Enumerations for the storefront fulfillment server.

This module defines the enums used to represent order status and the states
a payment notification passes through while it is reconciled into an order.
"""

import enum


class OrderStatus(str, enum.Enum):
  PAID = "PAID"
  PENDING = "pending"


class PaymentStatus(str, enum.Enum):
  PAID = "paid"


class FulfillmentState(str, enum.Enum):
  RECEIVED = "received"
  DUPLICATE = "duplicate"
  REJECTED = "rejected"
  VALIDATED = "validated"
  RESERVED = "reserved"
  COMMITTED = "committed"


class CartSource(str, enum.Enum):
  STRUCTURED = "structured"
  LEGACY = "legacy"
