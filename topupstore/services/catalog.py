import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import CatalogError, NoActiveProducts, NotFound, ProtocolError, RemoteError, ValidationError
from ..utils.formatting import utc_now_iso
from ..utils.logger import logger
from .brands import BrandTable
from .digiflazz import DigiflazzClient, FetchResult
from .overrides import (
    GAME_ID_OVERRIDES,
    IMAGE_OVERRIDES,
    PRICE_OVERRIDES,
    STATUS_OVERRIDES,
    OverrideStore,
    variant_key,
)
from .storage import KeyValueStorage
from .transformer import transform_price_list

CATALOG_KEY = "digiflazz_products"
LAST_SYNC_KEY = "digiflazz_last_sync"
CREDENTIALS_KEY = "digiflazz_config"
FALLBACK_CATALOG = Path(__file__).resolve().parent.parent / "data" / "fallback_products.json"

# Failures that may be answered from the cached catalog.
STALE_FALLBACK_ERRORS = (RemoteError, ProtocolError)


def merge_overrides(products: List[Dict[str, Any]], overrides: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Layer admin overrides onto a base catalog without touching the base."""
    prices = overrides.get(PRICE_OVERRIDES, {})
    statuses = overrides.get(STATUS_OVERRIDES, {})
    images = overrides.get(IMAGE_OVERRIDES, {})
    game_id_configs = overrides.get(GAME_ID_OVERRIDES, {})

    merged: List[Dict[str, Any]] = []
    for base in products:
        product = copy.deepcopy(base)
        product_id = str(product.get("id", ""))

        if statuses.get(product_id):
            product["status"] = statuses[product_id]
        if game_id_configs.get(product_id):
            product["gameIdConfig"] = copy.deepcopy(game_id_configs[product_id])
        if images.get(product_id):
            product["image"] = images[product_id]

        for variant in product.get("variants", []):
            key = variant_key(product_id, str(variant.get("id", "")))
            if prices.get(key) is not None:
                variant["price"] = prices[key]
            if statuses.get(key):
                variant["status"] = statuses[key]

        merged.append(product)
    return merged


def filter_visible(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    visible: List[Dict[str, Any]] = []
    for product in products:
        if product.get("status") == "inactive":
            continue
        variants = [variant for variant in product.get("variants", []) if variant.get("status") != "inactive"]
        if not variants:
            continue
        visible.append({**product, "variants": variants})
    return visible


def filter_category(products: List[Dict[str, Any]], category: Optional[str]) -> List[Dict[str, Any]]:
    if not category or category == "all":
        return products
    return [product for product in products if product.get("category") == category]


class CatalogService:
    def __init__(
        self,
        storage: KeyValueStorage,
        client: Optional[DigiflazzClient] = None,
        brands: Optional[BrandTable] = None,
        overrides: Optional[OverrideStore] = None,
        fallback_path: Optional[Path] = None,
    ):
        self.storage = storage
        self.client = client or DigiflazzClient()
        self.brands = brands or BrandTable.load()
        self.overrides = overrides or OverrideStore(storage)
        self.fallback_path = fallback_path or FALLBACK_CATALOG

    async def get_credentials(self) -> Dict[str, Any]:
        stored = await self.storage.get(CREDENTIALS_KEY, default=None)
        if isinstance(stored, dict):
            self.client.configure(str(stored.get("username") or ""), str(stored.get("apiKey") or ""))
        return {
            "username": self.client.username,
            "apiKey": self.client.api_key,
            "isConfigured": self.client.is_configured,
        }

    async def set_credentials(self, username: str, api_key: str) -> Dict[str, Any]:
        username = str(username or "").strip()
        api_key = str(api_key or "").strip()
        if bool(username) != bool(api_key):
            raise ValidationError("username and apiKey must be provided together")
        config = {"username": username, "apiKey": api_key, "isConfigured": bool(username and api_key)}
        await self.storage.set(CREDENTIALS_KEY, config)
        self.client.configure(username, api_key)
        return config

    async def cached_catalog(self) -> Optional[List[Dict[str, Any]]]:
        cached = await self.storage.get(CATALOG_KEY, default=None)
        if isinstance(cached, list) and cached:
            return cached
        return None

    async def sync(self) -> FetchResult:
        """Fetch, transform and cache the remote price list.

        Transport and remote rc failures fall back to the cached catalog as
        a stale result. Shape problems always raise and leave the cache as
        it was.
        """
        await self.get_credentials()
        try:
            records = await self.client.fetch_price_list()
            result = transform_price_list(records, self.brands)
            if result.no_active_products:
                logger.warning("No active products found after transformation.")
                raise NoActiveProducts()
        except STALE_FALLBACK_ERRORS as exc:
            cached = await self.cached_catalog()
            if cached is None:
                raise
            logger.warning(f"Using cached Digiflazz products due to API error: {exc.message}")
            return FetchResult.from_cache(cached, exc)

        await self.storage.set(CATALOG_KEY, result.products)
        await self.storage.set(LAST_SYNC_KEY, utc_now_iso())
        logger.info(f"Successfully synced {len(result.products)} products.")
        return FetchResult.fresh(result.products)

    def load_fallback_catalog(self) -> List[Dict[str, Any]]:
        return json.loads(Path(self.fallback_path).read_text(encoding="utf-8"))

    async def load_base_catalog(self) -> List[Dict[str, Any]]:
        cached = await self.cached_catalog()
        if cached is not None:
            return cached

        credentials = await self.get_credentials()
        if credentials["isConfigured"]:
            logger.info("No synced products found, trying to fetch from Digiflazz...")
            try:
                return (await self.sync()).products
            except CatalogError as exc:
                logger.warning(f"Digiflazz sync failed, using fallback catalog: {exc.message}")

        logger.info("Using fallback catalog.")
        return self.load_fallback_catalog()

    async def _effective_catalog(self) -> List[Dict[str, Any]]:
        base = await self.load_base_catalog()
        return merge_overrides(base, await self.overrides.load_all())

    async def get_products(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        products = filter_visible(await self._effective_catalog())
        return filter_category(products, category)

    async def get_products_for_admin(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        return filter_category(await self._effective_catalog(), category)

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        for product in await self.get_products():
            if product.get("id") == product_id:
                return product
        raise NotFound("Product not found")

    async def get_product_for_admin(self, product_id: str) -> Dict[str, Any]:
        for product in await self.get_products_for_admin():
            if product.get("id") == product_id:
                return product
        raise NotFound("Product not found")

    async def get_variant_for_admin(self, product_id: str, variant_id: str) -> Dict[str, Any]:
        product = await self.get_product_for_admin(product_id)
        for variant in product.get("variants", []):
            if str(variant.get("id")) == variant_id:
                return variant
        raise NotFound("Variant not found")

    async def search_products(self, query: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        products = await self.get_products_for_admin(category)
        needle = (query or "").strip().lower()
        if not needle:
            return products

        def matches(product: Dict[str, Any]) -> bool:
            fields = [product.get("name"), product.get("brand"), product.get("code")]
            for variant in product.get("variants", []):
                fields.extend([variant.get("name"), variant.get("code")])
            return any(needle in str(field or "").lower() for field in fields)

        return [product for product in products if matches(product)]

    async def last_sync_info(self) -> Dict[str, Any]:
        return {
            "lastSync": await self.storage.get(LAST_SYNC_KEY, default=None),
            "hasCache": await self.cached_catalog() is not None,
        }

    async def clear_synced_products(self) -> None:
        await self.storage.delete(CATALOG_KEY)
        await self.storage.delete(LAST_SYNC_KEY)
        await self.overrides.clear_all()
        logger.info("Cleared synced products and custom settings.")
