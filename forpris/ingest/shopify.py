"""Shopify Admin GraphQL client for current variant prices."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Optional

import httpx

from forpris.compliance.models import PriceObservation, utc_now
from forpris.config import settings

logger = logging.getLogger(__name__)

_PRODUCTS_QUERY = """
query VariantPrices($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        variants(first: 100) {
          edges { node { id title price compareAtPrice } }
        }
      }
    }
  }
}
"""

_VARIANT_QUERY = """
query VariantPrice($id: ID!) {
  productVariant(id: $id) {
    id
    title
    price
    compareAtPrice
    product { id title }
  }
}
"""


class ShopifyAPIError(Exception):
    """Shopify returned an HTTP error or GraphQL errors."""


def strip_gid(gid: str) -> str:
    """'gid://shopify/ProductVariant/123' -> '123'."""
    return gid.rsplit("/", 1)[-1]


def _parse_money(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    if isinstance(value, dict):  # MoneyV2 shape
        value = value.get("amount")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ShopifyAPIError(f"Unparseable price: {value!r}") from e


@dataclass
class VariantPrice:
    """Current price of one variant as reported by Shopify."""

    shop: str
    product_id: str
    variant_id: str
    price: Decimal
    compare_at_price: Optional[Decimal]
    title: Optional[str] = None

    def to_observation(self, timestamp: Optional[datetime] = None) -> PriceObservation:
        return PriceObservation(
            shop=self.shop,
            product_id=self.product_id,
            variant_id=self.variant_id,
            price=self.price,
            compare_at_price=self.compare_at_price,
            timestamp=timestamp or utc_now(),
        )


class ShopifyAdminClient:
    """
    Reads product variant prices through the Admin GraphQL API.

    Authentication is out of scope: an access token for the shop is supplied
    by the caller (or taken from settings).
    """

    def __init__(
        self,
        shop: str,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = shop
        self.access_token = access_token if access_token is not None else settings.shopify_access_token
        self.api_version = api_version or settings.shopify_api_version
        self.page_size = page_size or settings.shopify_page_size
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=settings.shopify_timeout_seconds,
                transport=self._transport,
                headers={
                    "X-Shopify-Access-Token": self.access_token,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "ShopifyAdminClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _query(self, query: str, variables: dict) -> dict:
        client = await self._get_client()
        try:
            response = await client.post(self.endpoint, json={"query": query, "variables": variables})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Shopify request failed for {self.shop}: HTTP {e.response.status_code}")
            raise ShopifyAPIError(f"HTTP {e.response.status_code} from {self.shop}") from e
        except httpx.RequestError as e:
            logger.warning(f"Shopify request failed for {self.shop}: {e}")
            raise ShopifyAPIError(f"Request to {self.shop} failed: {e}") from e

        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise ShopifyAPIError(f"GraphQL errors from {self.shop}: {messages}")
        return payload.get("data") or {}

    async def iter_variant_prices(self) -> AsyncIterator[VariantPrice]:
        """Yield the current price of every variant in the shop."""
        after: Optional[str] = None
        while True:
            data = await self._query(_PRODUCTS_QUERY, {"first": self.page_size, "after": after})
            products = data.get("products") or {}

            for edge in products.get("edges", []):
                product = edge["node"]
                product_id = strip_gid(product["id"])
                for variant_edge in product.get("variants", {}).get("edges", []):
                    variant = variant_edge["node"]
                    price = _parse_money(variant.get("price"))
                    if price is None:
                        logger.debug(f"Variant {variant['id']} has no price, skipping")
                        continue
                    yield VariantPrice(
                        shop=self.shop,
                        product_id=product_id,
                        variant_id=strip_gid(variant["id"]),
                        price=price,
                        compare_at_price=_parse_money(variant.get("compareAtPrice")),
                        title=product.get("title"),
                    )

            page_info = products.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")

    async def fetch_variant_prices(self) -> list[VariantPrice]:
        """Fetch every variant price in the shop."""
        return [variant async for variant in self.iter_variant_prices()]

    async def fetch_variant(self, product_id: str, variant_id: str) -> VariantPrice:
        """
        Fetch the current price of a single variant.

        Raises:
            ShopifyAPIError: If the variant does not exist or the request fails
        """
        data = await self._query(
            _VARIANT_QUERY, {"id": f"gid://shopify/ProductVariant/{variant_id}"}
        )
        variant = data.get("productVariant")
        if not variant:
            raise ShopifyAPIError(f"Product or variant not found: {product_id}/{variant_id}")

        price = _parse_money(variant.get("price"))
        if price is None:
            raise ShopifyAPIError(f"Variant {variant_id} has no price")

        return VariantPrice(
            shop=self.shop,
            product_id=strip_gid(variant["product"]["id"]) if variant.get("product") else product_id,
            variant_id=strip_gid(variant["id"]),
            price=price,
            compare_at_price=_parse_money(variant.get("compareAtPrice")),
            title=(variant.get("product") or {}).get("title"),
        )
