import math
import re
from typing import Any, Dict, List, Optional

from ..utils.logger import logger
from .brands import BrandTable

MARKUP = 1.1
AMOUNT_PATTERN = re.compile(r"(\d+)\s*(diamond|uc|crystal|point|credit)", re.IGNORECASE)
AMOUNT_LABELS = (
    ("diamond", "Diamonds"),
    ("uc", "UC"),
    ("crystal", "Genesis Crystals"),
    ("point", "Points"),
    ("credit", "Credits"),
)


class TransformResult:
    def __init__(self, products: List[Dict[str, Any]], received: int, skipped: int):
        self.products = products
        self.received = received
        self.skipped = skipped

    @property
    def no_active_products(self) -> bool:
        # Distinct from an empty upload: records arrived but none survived.
        return self.received > 0 and not self.products


def brand_key(brand: str) -> str:
    return re.sub(r"\s+", "-", brand.lower())


def selling_price(base_price: Any) -> int:
    # Half rounds up, matching the storefront's historical pricing.
    return int(math.floor(float(base_price) * MARKUP + 0.5))


def extract_amount(product_name: str) -> str:
    match = AMOUNT_PATTERN.search(product_name or "")
    if match:
        amount = match.group(1)
        unit = match.group(2).lower()
        for token, label in AMOUNT_LABELS:
            if token in unit:
                return f"{amount} {label}"
    return product_name


def _is_active(record: Dict[str, Any]) -> bool:
    return record.get("buyer_product_status") is True and record.get("seller_product_status") is True


def _seed_product(brand: str, brands: BrandTable) -> Dict[str, Any]:
    key = brand_key(brand)
    profile = brands.lookup(brand)
    currency = profile["currency"]
    return {
        "id": key,
        "name": f"{brand} {currency}",
        "brand": brand,
        "category": profile["category"],
        "code": key.upper(),
        "image": profile["image"],
        "description": f"Top up {currency} untuk {brand}",
        "type": "prepaid",
        "status": "active",
        "isPopular": profile["popular"],
        "gameIdConfig": profile["gameIdConfig"],
        "variants": [],
    }


def _to_variant(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    sku = str(record.get("buyer_sku_code") or "").strip()
    if not sku:
        return None
    try:
        base_price = float(record.get("price"))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(base_price):
        return None

    name = str(record.get("product_name") or "").strip()
    original_price = int(base_price) if base_price.is_integer() else base_price
    return {
        "id": sku,
        "name": name,
        "amount": extract_amount(name),
        "price": selling_price(base_price),
        "originalPrice": original_price,
        "code": sku,
        "status": "active",
    }


def transform_price_list(records: List[Any], brands: BrandTable) -> TransformResult:
    """Group upstream SKU records into brand-level products.

    Records missing either active flag, or whose flags are not ``True``,
    are dropped. Variants keep upstream order until the final per-product
    sort by selling price.
    """
    products: Dict[str, Dict[str, Any]] = {}
    skipped = 0

    for record in records:
        if not isinstance(record, dict) or not _is_active(record):
            skipped += 1
            continue

        brand = str(record.get("brand") or "").strip()
        variant = _to_variant(record)
        if not brand or variant is None:
            skipped += 1
            continue

        key = brand_key(brand)
        if key not in products:
            products[key] = _seed_product(brand, brands)
        products[key]["variants"].append(variant)

    for product in products.values():
        product["variants"].sort(key=lambda variant: variant["price"])

    if skipped:
        logger.info(f"Price list transform skipped {skipped} of {len(records)} records.")

    return TransformResult(list(products.values()), received=len(records), skipped=skipped)
