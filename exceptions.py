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

"""Custom exceptions for the storefront fulfillment server."""


class StorefrontError(Exception):
  """Base class for all storefront exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class ResourceNotFoundError(StorefrontError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidRequestError(StorefrontError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class InvalidCartError(StorefrontError):
  """Raised when cart normalization leaves no usable lines."""

  def __init__(self, message: str = "Cart has no valid items"):
    super().__init__(message, code="INVALID_CART", status_code=400)


class ProductNotFoundError(StorefrontError):
  """Raised when a cart line references a missing or inactive product."""

  def __init__(self, product_id: str):
    self.product_id = product_id
    super().__init__(
        f"Product not found: {product_id}",
        code="PRODUCT_NOT_FOUND",
        status_code=404,
    )


class InsufficientStockError(StorefrontError):
  """Raised when a conditional stock decrement matched no row."""

  def __init__(self, product_id: str):
    self.product_id = product_id
    super().__init__(
        f"Insufficient stock for {product_id}",
        code="OUT_OF_STOCK",
        status_code=409,
    )


class MissingMetadataError(StorefrontError):
  """Raised when a payment notification cannot be resolved to cart lines."""

  def __init__(self, message: str = "Missing required metadata"):
    super().__init__(message, code="MISSING_METADATA", status_code=400)
