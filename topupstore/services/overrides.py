import math
from typing import Any, Dict, Optional

from ..errors import ValidationError
from ..utils.formatting import utc_now_iso
from ..utils.logger import logger
from .storage import KeyValueStorage

PRICE_OVERRIDES = "custom_prices"
STATUS_OVERRIDES = "status_overrides"
IMAGE_OVERRIDES = "custom_images"
GAME_ID_OVERRIDES = "game_id_configs"
OVERRIDE_KEYS = (PRICE_OVERRIDES, STATUS_OVERRIDES, IMAGE_OVERRIDES, GAME_ID_OVERRIDES)

STATUSES = {"active", "inactive"}
GAME_ID_CONFIG_FIELDS = {
    "requiresGameId": bool,
    "gameIdLabel": str,
    "gameIdPlaceholder": str,
    "requiresServerId": bool,
    "serverIdLabel": str,
    "serverIdPlaceholder": str,
    "gameIdFormat": str,
    "gameIdMinLength": int,
    "gameIdMaxLength": int,
    "serverIdFormat": str,
    "serverIdMinLength": int,
    "serverIdMaxLength": int,
}


def variant_key(product_id: str, variant_id: str) -> str:
    return f"{product_id}-{variant_id}"


def migrate_flat_map(stored: Any) -> Dict[str, Any]:
    """Convert ``{key: value, ..., "timestamp": ts}`` into the entries layout."""
    if not isinstance(stored, dict):
        raise ValueError("override map must be an object")
    entries = {str(key): value for key, value in stored.items() if key != "timestamp"}
    return {"entries": entries, "timestamp": stored.get("timestamp")}


def normalize_game_id_config(config: Any) -> Dict[str, Any]:
    if not isinstance(config, dict):
        raise ValidationError("game id config must be an object")

    normalized: Dict[str, Any] = {}
    for field, kind in GAME_ID_CONFIG_FIELDS.items():
        if field not in config or config[field] is None:
            continue
        value = config[field]
        if kind is bool:
            normalized[field] = bool(value)
        elif kind is int:
            try:
                normalized[field] = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{field} must be a number")
        else:
            normalized[field] = str(value).strip()

    if "requiresGameId" not in normalized or "requiresServerId" not in normalized:
        raise ValidationError("requiresGameId and requiresServerId are required")
    if normalized["requiresGameId"] and not normalized.get("gameIdLabel"):
        raise ValidationError("gameIdLabel is required when a game id is required")
    normalized.setdefault("gameIdLabel", "Game ID")
    normalized.setdefault("gameIdPlaceholder", "")
    return normalized


class OverrideStore:
    """Admin edits layered over the synced catalog.

    Four independent maps, each keyed by product id or by
    ``"<productId>-<variantId>"`` for variant-scoped entries.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        for key in OVERRIDE_KEYS:
            storage.register_migration(key, migrate_flat_map)

    async def _load(self, name: str) -> Dict[str, Any]:
        stored = await self.storage.get(name, default=None)
        if not isinstance(stored, dict) or not isinstance(stored.get("entries"), dict):
            return {"entries": {}, "timestamp": None}
        return stored

    async def entries(self, name: str) -> Dict[str, Any]:
        return dict((await self._load(name))["entries"])

    async def load_all(self) -> Dict[str, Dict[str, Any]]:
        return {name: await self.entries(name) for name in OVERRIDE_KEYS}

    async def last_modified(self, name: str) -> Optional[str]:
        return (await self._load(name)).get("timestamp")

    async def set_entry(self, name: str, key: str, value: Any) -> None:
        if name not in OVERRIDE_KEYS:
            raise ValueError(f"unknown override map {name}")
        stored = await self._load(name)
        stored["entries"][key] = value
        stored["timestamp"] = utc_now_iso()
        await self.storage.set(name, stored)

    async def clear_entry(self, name: str, key: str) -> bool:
        if name not in OVERRIDE_KEYS:
            raise ValueError(f"unknown override map {name}")
        stored = await self._load(name)
        if key not in stored["entries"]:
            return False
        del stored["entries"][key]
        stored["timestamp"] = utc_now_iso()
        await self.storage.set(name, stored)
        return True

    async def clear_all(self) -> None:
        for name in OVERRIDE_KEYS:
            await self.storage.delete(name)

    async def save_custom_price(self, product_id: str, variant_id: str, price: Any) -> int:
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise ValidationError("price must be a number")
        if not math.isfinite(value):
            raise ValidationError("price must be a number")
        if value < 0:
            raise ValidationError("price must not be negative")
        amount = int(value) if value.is_integer() else value

        key = variant_key(product_id, variant_id)
        await self.set_entry(PRICE_OVERRIDES, key, amount)
        logger.info(f"Saved custom price for {key}: {amount}")
        return amount

    async def update_product_status(self, product_id: str, status: str) -> None:
        status = self._check_status(status)
        await self.set_entry(STATUS_OVERRIDES, product_id, status)
        logger.info(f"Updated product status for {product_id}: {status}")

    async def update_variant_status(self, product_id: str, variant_id: str, status: str) -> None:
        status = self._check_status(status)
        key = variant_key(product_id, variant_id)
        await self.set_entry(STATUS_OVERRIDES, key, status)
        logger.info(f"Updated variant status for {key}: {status}")

    async def save_product_image(self, product_id: str, image_url: str) -> None:
        image_url = str(image_url or "").strip()
        if not image_url:
            raise ValidationError("image url is required")
        await self.set_entry(IMAGE_OVERRIDES, product_id, image_url)
        logger.info(f"Saved custom image for {product_id}: {image_url}")

    async def save_game_id_config(self, product_id: str, config: Any) -> Dict[str, Any]:
        normalized = normalize_game_id_config(config)
        await self.set_entry(GAME_ID_OVERRIDES, product_id, normalized)
        logger.info(f"Saved game ID config for {product_id}")
        return normalized

    @staticmethod
    def _check_status(status: Any) -> str:
        value = str(status or "").strip().lower()
        if value not in STATUSES:
            raise ValidationError("status must be 'active' or 'inactive'")
        return value
