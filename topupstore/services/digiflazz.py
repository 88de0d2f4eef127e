import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import aiohttp
from dotenv import load_dotenv

from ..errors import (
    CatalogError,
    EmptyCatalog,
    NotConfigured,
    ProtocolError,
    RemoteError,
    UnrecognizedShape,
)
from ..utils.logger import logger
from .signature import generate_signature

DEFAULT_API_URL = "https://api.digiflazz.com/v1/price-list"
SUCCESS_RC = "00"


class FetchResult:
    """Outcome of a catalog sync.

    ``stale`` is set when the remote call failed and a previously cached
    catalog was returned instead; ``error`` then carries the failure.
    """

    def __init__(self, products: List[Dict[str, Any]], stale: bool = False, error: Optional[CatalogError] = None):
        self.products = products
        self.stale = stale
        self.error = error

    @classmethod
    def fresh(cls, products: List[Dict[str, Any]]) -> "FetchResult":
        return cls(products)

    @classmethod
    def from_cache(cls, products: List[Dict[str, Any]], error: CatalogError) -> "FetchResult":
        return cls(products, stale=True, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": "stale" if self.stale else "fresh",
            "error": self.error.message if self.error else None,
            "count": len(self.products),
        }


class DigiflazzClient:
    def __init__(self, username: Optional[str] = None, api_key: Optional[str] = None):
        self.api_url = DEFAULT_API_URL
        self.timeout_seconds = 15.0
        self.username = ""
        self.api_key = ""
        self._explicit_credentials = username is not None or api_key is not None
        self._refresh_config()
        if self._explicit_credentials:
            self.configure(username or "", api_key or "")

    def _refresh_config(self) -> None:
        load_dotenv()
        self.api_url = (os.getenv("DIGIFLAZZ_API_URL") or DEFAULT_API_URL).strip() or DEFAULT_API_URL
        self.timeout_seconds = self._to_float(os.getenv("DIGIFLAZZ_TIMEOUT_SECONDS"), default=15.0)
        if not self._explicit_credentials:
            self.username = (os.getenv("DIGIFLAZZ_USERNAME") or "").strip()
            self.api_key = (os.getenv("DIGIFLAZZ_API_KEY") or "").strip()

    def configure(self, username: str, api_key: str) -> None:
        self._explicit_credentials = True
        self.username = str(username or "").strip()
        self.api_key = str(api_key or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.api_key)

    def build_request_body(self, command: str = "pricelist") -> Dict[str, str]:
        return {
            "cmd": command,
            "username": self.username,
            "sign": generate_signature(self.username, self.api_key, command),
        }

    async def fetch_price_list(self) -> List[Dict[str, Any]]:
        """Return the raw upstream SKU records.

        Raises NotConfigured, RemoteError, ProtocolError, EmptyCatalog or
        UnrecognizedShape; never returns an empty list.
        """
        self._refresh_config()
        if not self.is_configured:
            raise NotConfigured()

        payload = await self._post(self.build_request_body("pricelist"))
        self._check_rc(payload)

        records = self._extract_records(payload)
        if records is None:
            logger.warning(f"Unexpected response structure from Digiflazz: {str(payload)[:300]}")
            raise UnrecognizedShape()
        if not records:
            logger.warning("Empty product list received from Digiflazz.")
            raise EmptyCatalog()
        return records

    async def _post(self, body: Dict[str, Any]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        logger.info(f"Fetching price list from {self.api_url} as {self.username}")

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.api_url, json=body) as response:
                    text = await response.text()
                    if response.status < 200 or response.status >= 300:
                        logger.error(f"Digiflazz error {response.status} at {self.api_url}: {text[:300]}")
                        raise RemoteError(
                            f"Server error: HTTP {response.status} {response.reason or ''}".strip(),
                            http_status=response.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"Digiflazz request failed ({self.api_url}): {exc!r}")
            raise RemoteError(f"Network error: unable to connect to Digiflazz API ({exc.__class__.__name__})")

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            raise RemoteError("Digiflazz API returned a non-JSON response")

    @staticmethod
    def _check_rc(payload: Any) -> None:
        candidates = [payload]
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            candidates.append(payload["data"])

        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            rc = candidate.get("rc")
            if rc is None or rc == "":
                continue
            rc = str(rc)
            if rc != SUCCESS_RC:
                message = str(candidate.get("message") or f"Digiflazz API error (code: {rc})")
                logger.error(f"Digiflazz API returned error rc={rc}: {message}")
                raise ProtocolError(f"Digiflazz API Error: {message}", rc=rc)

    @staticmethod
    def _extract_records(payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, dict):
            data = payload.get("data")
            if isinstance(data, dict) and isinstance(data.get("products"), list):
                return data["products"]
            if isinstance(payload.get("products"), list):
                return payload["products"]
            if isinstance(data, list):
                return data
            return None
        if isinstance(payload, list):
            return payload
        return None

    @staticmethod
    def _to_float(value: Any, default: float) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return default
