"""
Shopware admin API client used as the product population source.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from shared.logging import get_logger
from shared.errors import DashboardException, ExternalServiceError
from shared.circuit_breaker import get_circuit_breaker
from shared.retry import retry_on_exception, RetryConfig

from ..rules.fields import STANDARD_FIELDS
from ..rules.models import Dimensions, Manufacturer, Product, ProductPriceRule
from .query import CatalogFilter, CatalogQuery


# Product field path -> Shopware DAL field
FIELD_MAP = {
    "id": "id",
    "name": "name",
    "productNumber": "productNumber",
    "manufacturerNumber": "manufacturerNumber",
    "ean": "ean",
    "stock": "stock",
    "available": "available",
    "weight": "weight",
    "dimensions.width": "width",
    "dimensions.height": "height",
    "dimensions.length": "length",
    "categoryNames": "categories.name",
    "manufacturer.name": "manufacturer.name",
}

DEFAULT_TAX_RATE = 19.0
TOKEN_EXPIRY_MARGIN_SECONDS = 60
TRANSIENT_STATUS_CODES = (502, 503, 504)


def _status_code(exc: Exception) -> Optional[int]:
    if isinstance(exc, ExternalServiceError):
        return exc.details.get("status_code")
    return None


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, httpx.TransportError) or _status_code(exc) in TRANSIENT_STATUS_CODES


def _is_upstream_failure(exc: Exception) -> bool:
    # Rejected requests (4xx) say nothing about the shop's health
    status_code = _status_code(exc)
    return status_code is None or status_code >= 500


def _catalog_field(path: str) -> Optional[str]:
    if path in FIELD_MAP:
        return FIELD_MAP[path]
    if path.startswith("customFields.") and len(path) > len("customFields."):
        return path
    return None


class ShopwareClient:
    """Client for product search against the Shopware admin API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        page_size: int = 100,
        max_candidates: int = 500,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.api_secret = api_secret
        self.page_size = page_size
        self.max_candidates = max_candidates
        self.timeout = timeout
        self.logger = get_logger("cross_selling.shopware_client")

        self.circuit_breaker = get_circuit_breaker(
            "shopware",
            failure_threshold=3,
            recovery_timeout=30.0,
            counts_as_failure=_is_upstream_failure
        )

        self._access_token: Optional[str] = None
        self._token_expiry = 0.0
        self._token_lock = asyncio.Lock()

    async def search_products(self, query: CatalogQuery) -> List[Product]:
        """Search active products, narrowed by the query filters."""
        limit = min(query.limit or self.max_candidates, self.max_candidates)
        filters = [{"type": "equals", "field": "active", "value": True}]
        filters.extend(self._translate_filters(query.filters))

        products: List[Product] = []
        page = 1
        while True:
            body = self._search_body(filters, page)
            data = await self._request("/api/search/product", body)

            batch = data.get("data") or []
            products.extend(self.map_product(raw) for raw in batch)

            total = (data.get("meta") or {}).get("total")
            exhausted = len(batch) < self.page_size or (total is not None and page * self.page_size >= total)
            if exhausted or len(products) >= limit:
                break
            page += 1

        self.logger.info(
            "Catalog search completed",
            filters=len(filters),
            pages=page,
            returned=min(len(products), limit)
        )
        return products[:limit]

    async def fetch_product(self, product_id: str) -> Optional[Product]:
        """Fetch a single product by id, or None if it does not exist."""
        body = self._search_body([], 1, limit=1)
        body["ids"] = [product_id]
        data = await self._request("/api/search/product", body)

        rows = data.get("data") or []
        if not rows:
            self.logger.info("Product not found", product_id=product_id)
            return None
        return self.map_product(rows[0])

    async def fetch_available_fields(self) -> Dict[str, List[Dict[str, str]]]:
        """Standard rule fields plus the shop's active custom fields."""
        standard_fields = [descriptor.to_dict() for descriptor in STANDARD_FIELDS]
        custom_fields: List[Dict[str, str]] = []

        try:
            data = await self._request("/api/search/custom-field", {
                "limit": 500,
                "filter": [{"type": "equals", "field": "active", "value": True}],
            })
        except ExternalServiceError as e:
            # Rule authoring still works with the standard fields
            self.logger.warning("Custom fields unavailable", error=e.message)
            data = {}

        for custom_field in data.get("data") or []:
            name = custom_field.get("name")
            if not name:
                continue
            labels = (custom_field.get("config") or {}).get("label") or {}
            custom_fields.append({
                "field": f"customFields.{name}",
                "label": labels.get("en-GB") or labels.get("de-DE") or name,
                "type": custom_field.get("type") or "text",
            })

        return {"standardFields": standard_fields, "customFields": custom_fields}

    def _translate_filters(self, filters: List[CatalogFilter]) -> List[Dict[str, Any]]:
        translated = []
        for catalog_filter in filters:
            field = _catalog_field(catalog_filter.field)
            if field is None:
                self.logger.debug("Filter not searchable in catalog", field=catalog_filter.field)
                continue
            translated.append({"type": catalog_filter.type, "field": field, "value": catalog_filter.value})
        return translated

    def _search_body(self, filters: List[Dict[str, Any]], page: int, limit: Optional[int] = None) -> Dict[str, Any]:
        return {
            "limit": limit or self.page_size,
            "page": page,
            "total-count-mode": 1,
            "sort": [{"field": "productNumber", "order": "ASC"}],
            "filter": filters,
            "associations": {
                "manufacturer": {},
                "categories": {},
                "cover": {"associations": {"media": {}}},
                "tax": {},
                "prices": {},
            },
        }

    async def _request(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST to the admin API with circuit breaker and error mapping."""
        try:
            return await self.circuit_breaker.call(self._send, path, body)
        except DashboardException:
            raise
        except Exception as exc:
            self.logger.error("Shopware request failed", path=path, error=str(exc))
            raise ExternalServiceError(
                service="shopware",
                message=str(exc),
                details={"path": path}
            ) from exc

    @retry_on_exception(
        (httpx.TransportError, ExternalServiceError),
        config=RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0),
        should_retry=_is_transient
    )
    async def _send(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            token = await self._authenticate(client)
            response = await client.post(url, json=body, headers=self._headers(token))

            if response.status_code == 401:
                # Token revoked or expired early; retry once with a fresh one
                self._invalidate_token()
                token = await self._authenticate(client)
                response = await client.post(url, json=body, headers=self._headers(token))

        if response.status_code >= 400:
            self.logger.error(
                "Shopware request rejected",
                url=url,
                status_code=response.status_code,
                response=response.text
            )
            raise ExternalServiceError(
                service="shopware",
                message=f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code, "body": response.text}
            )

        return response.json()

    async def _authenticate(self, client: httpx.AsyncClient) -> str:
        """Return a cached OAuth token or obtain a new one."""
        async with self._token_lock:
            if self._access_token and time.time() < self._token_expiry:
                return self._access_token

            response = await client.post(
                f"{self.base_url}/api/oauth/token",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.api_key,
                    "client_secret": self.api_secret,
                },
                headers={"Accept": "application/json"}
            )

            if response.status_code != 200:
                self._invalidate_token()
                raise ExternalServiceError(
                    service="shopware",
                    message="Failed to authenticate with Shopware API",
                    details={"status_code": response.status_code, "body": response.text}
                )

            data = response.json()
            expires_in = data.get("expires_in") or 600
            self._access_token = data["access_token"]
            self._token_expiry = time.time() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
            self.logger.debug("Shopware token refreshed", expires_in=expires_in)
            return self._access_token

    def _invalidate_token(self):
        self._access_token = None
        self._token_expiry = 0.0

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
        }

    @staticmethod
    def map_product(raw: Dict[str, Any]) -> Product:
        """Convert a Shopware product record into a Product."""
        translated = raw.get("translated") or {}
        tax_rate = (raw.get("tax") or {}).get("taxRate") or DEFAULT_TAX_RATE

        gross = net = 0.0
        prices = raw.get("price") or []
        if prices:
            gross = prices[0].get("gross") or 0.0
            net = prices[0].get("net") or 0.0
        if not net and gross:
            net = gross / (1 + tax_rate / 100)

        price_rules = []
        for graduated in raw.get("prices") or []:
            entry = (graduated.get("price") or [{}])[0]
            rule_gross = entry.get("gross") or 0.0
            price_rules.append(ProductPriceRule(
                quantity=graduated.get("quantityStart") or 1,
                price=rule_gross,
                net_price=entry.get("net") or rule_gross / (1 + tax_rate / 100),
            ))

        dimensions = {key: raw[key] for key in ("width", "height", "length") if raw.get(key) is not None}
        manufacturer = raw.get("manufacturer") or {}
        cover_media = (raw.get("cover") or {}).get("media") or {}

        return Product(
            id=raw["id"],
            product_number=raw.get("productNumber") or "",
            name=raw.get("name") or translated.get("name") or "",
            description=raw.get("description") or translated.get("description"),
            price=gross,
            net_price=net,
            tax_rate=tax_rate,
            stock=raw.get("stock") or 0,
            available=bool(raw.get("available", True)),
            manufacturer=Manufacturer(name=manufacturer.get("name")) if manufacturer else None,
            manufacturer_number=raw.get("manufacturerNumber"),
            ean=raw.get("ean"),
            weight=raw.get("weight"),
            dimensions=Dimensions(unit="mm", **dimensions) if dimensions else None,
            category_names=[c["name"] for c in raw.get("categories") or [] if c.get("name")],
            custom_fields=raw.get("customFields") or {},
            price_rules=price_rules,
            packaging_unit=raw.get("packUnit"),
            min_order_quantity=raw.get("minPurchase"),
            max_order_quantity=raw.get("maxPurchase"),
            image_url=cover_media.get("url"),
            created_at=raw.get("createdAt"),
            updated_at=raw.get("updatedAt"),
        )
