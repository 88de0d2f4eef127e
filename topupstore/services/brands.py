import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..utils.logger import logger

DEFAULT_BRAND_TABLE = Path(__file__).resolve().parent.parent / "data" / "brands.json"
PROFILE_FIELDS = ("category", "currency", "image", "popular", "gameIdConfig")


class BrandTable:
    """Brand keyword lookup that supplies catalog defaults.

    Entries are matched in file order by case-insensitive substring. Each
    field is resolved independently: the first matching entry that defines
    the field wins, so keyword-only rows (e.g. ``honkai`` -> ``rpg``) can
    refine a single attribute without repeating a full profile.
    """

    def __init__(self, entries: List[Dict[str, Any]], default: Dict[str, Any]):
        self.entries = [entry for entry in entries if isinstance(entry, dict)]
        self.default = default

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BrandTable":
        load_dotenv()
        configured = (path or os.getenv("BRAND_TABLE_PATH") or "").strip()
        table_path = Path(configured) if configured else DEFAULT_BRAND_TABLE
        try:
            payload = json.loads(table_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            if table_path == DEFAULT_BRAND_TABLE:
                raise
            logger.error(f"Brand table {table_path} could not be read ({exc}); using bundled table.")
            payload = json.loads(DEFAULT_BRAND_TABLE.read_text(encoding="utf-8"))

        default = payload.get("default") if isinstance(payload, dict) else None
        entries = payload.get("brands") if isinstance(payload, dict) else None
        if not isinstance(default, dict) or not isinstance(entries, list):
            raise ValueError(f"Brand table {table_path} must contain 'default' and 'brands'")
        return cls(entries, default)

    def _matches(self, entry: Dict[str, Any], brand_lower: str) -> bool:
        keywords = entry.get("keywords", [])
        if not isinstance(keywords, list):
            return False
        return any(str(keyword).strip().lower() in brand_lower for keyword in keywords if str(keyword).strip())

    def lookup(self, brand: str) -> Dict[str, Any]:
        brand_lower = (brand or "").lower()
        profile: Dict[str, Any] = {}
        for field in PROFILE_FIELDS:
            for entry in self.entries:
                if field in entry and self._matches(entry, brand_lower):
                    profile[field] = entry[field]
                    break
            else:
                profile[field] = self.default.get(field)
        profile["popular"] = bool(profile.get("popular"))
        return copy.deepcopy(profile)

    def category(self, brand: str) -> str:
        return str(self.lookup(brand)["category"])

    def currency(self, brand: str) -> str:
        return str(self.lookup(brand)["currency"])

    def game_id_config(self, brand: str) -> Dict[str, Any]:
        return self.lookup(brand)["gameIdConfig"]
