import json
import os
import re
import ssl
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import asyncpg
from dotenv import load_dotenv

from ..utils.logger import logger

SCHEMA_VERSION = 1

Migration = Callable[[Any], Any]


class KeyValueStorage:
    """JSON blob storage keyed by name, on disk or in a Postgres table.

    Every value is written inside a ``{"schemaVersion": N, "value": ...}``
    envelope. Blobs written before versioning (bare JSON) are read as
    version 0 and passed through the migration registered for their key,
    then rewritten. Unreadable blobs are logged and removed.
    """

    def __init__(
        self,
        backend: Optional[str] = None,
        data_dir: Optional[str] = None,
        db_url: Optional[str] = None,
        table: Optional[str] = None,
    ):
        load_dotenv()
        self.db_url = (db_url if db_url is not None else os.getenv("DATABASE_URL") or "").strip()
        self.backend = (backend or os.getenv("SHOP_STORAGE_BACKEND") or "auto").strip().lower()
        if self.backend not in {"auto", "postgres", "json"}:
            self.backend = "auto"
        self.require_postgres = self.backend == "postgres"
        self.use_postgres = self.require_postgres or (self.backend == "auto" and bool(self.db_url))

        self.table = (table or os.getenv("SHOP_KV_TABLE") or "shop_kv").strip()
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", self.table):
            self.table = "shop_kv"

        self.data_dir = Path(data_dir or os.getenv("SHOP_DATA_DIR") or "data")
        self.pg_pool: Optional[asyncpg.Pool] = None
        self.migrations: Dict[str, Migration] = {}

    @property
    def backend_name(self) -> str:
        return "postgres" if self.use_postgres and self.pg_pool is not None else "json"

    def register_migration(self, key: str, migration: Migration) -> None:
        self.migrations[key] = migration

    async def start(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.use_postgres or self.pg_pool is not None:
            return

        try:
            await self._init_postgres()
        except Exception as exc:
            if self.require_postgres:
                logger.critical(f"Postgres storage init failed in required mode: {exc}")
                raise
            logger.error(f"Postgres storage init failed, falling back to JSON files: {exc}")
            self.use_postgres = False

    async def close(self) -> None:
        if self.pg_pool is not None:
            await self.pg_pool.close()
            self.pg_pool = None

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self._read_raw(key)
        if raw is None:
            return default

        try:
            stored = json.loads(raw)
        except ValueError as exc:
            logger.warning(f"Stored value for '{key}' is not valid JSON ({exc}); clearing it.")
            await self.delete(key)
            return default

        if isinstance(stored, dict) and "schemaVersion" in stored and "value" in stored:
            version = stored.get("schemaVersion")
            if version == SCHEMA_VERSION:
                return stored["value"]
            logger.warning(f"Stored value for '{key}' has unknown schema version {version!r}; clearing it.")
            await self.delete(key)
            return default

        migration = self.migrations.get(key)
        try:
            value = migration(stored) if migration else stored
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning(f"Could not migrate legacy value for '{key}' ({exc}); clearing it.")
            await self.delete(key)
            return default

        logger.info(f"Migrated legacy value for '{key}' to schema version {SCHEMA_VERSION}.")
        await self.set(key, value)
        return value

    async def set(self, key: str, value: Any) -> None:
        payload = json.dumps({"schemaVersion": SCHEMA_VERSION, "value": value}, ensure_ascii=False)
        await self._write_raw(key, payload)

    async def delete(self, key: str) -> None:
        if self.use_postgres and self.pg_pool is not None:
            await self.pg_pool.execute(f"DELETE FROM {self.table} WHERE key = $1", key)
            return
        path = self._path(key)
        if path.exists():
            path.unlink()

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    def _path(self, key: str) -> Path:
        safe_key = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.data_dir / f"{safe_key}.json"

    async def _read_raw(self, key: str) -> Optional[str]:
        if self.use_postgres and self.pg_pool is not None:
            row = await self.pg_pool.fetchrow(f"SELECT value_json FROM {self.table} WHERE key = $1", key)
            if row is None:
                return None
            return str(row.get("value_json") or "")

        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    async def _write_raw(self, key: str, payload: str) -> None:
        if self.use_postgres and self.pg_pool is not None:
            await self.pg_pool.execute(
                f"""
                INSERT INTO {self.table} (key, value_json, updated_at)
                VALUES ($1, $2, NOW())
                ON CONFLICT (key)
                DO UPDATE SET value_json = EXCLUDED.value_json, updated_at = NOW()
                """,
                key,
                payload,
            )
            return

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(payload, encoding="utf-8")

    async def _init_postgres(self) -> None:
        if not self.db_url:
            raise RuntimeError("DATABASE_URL is required for postgres storage")

        normalized_db_url, ssl_arg = self._normalize_postgres_dsn(self.db_url)
        pool_kwargs: Dict[str, Any] = {
            "dsn": normalized_db_url,
            "min_size": 1,
            "max_size": 5,
            "command_timeout": 30,
        }
        if ssl_arg is not None:
            pool_kwargs["ssl"] = ssl_arg
        self.pg_pool = await asyncpg.create_pool(**pool_kwargs)

        async with self.pg_pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
        logger.info(f"Postgres storage ready (table {self.table}).")

    @staticmethod
    def _normalize_postgres_dsn(db_url: str) -> tuple:
        dsn = db_url.strip()
        if dsn.startswith("postgresql://"):
            dsn = "postgres://" + dsn[len("postgresql://") :]

        parsed = urlparse(dsn)
        if parsed.scheme != "postgres":
            return dsn, None

        query = dict(parse_qsl(parsed.query, keep_blank_values=True))
        sslmode = str(query.pop("sslmode", "")).strip().lower()
        explicit_ssl = str(query.pop("ssl", "")).strip().lower()

        wants_ssl = sslmode in {"require", "verify-ca", "verify-full"} or explicit_ssl in {
            "1",
            "true",
            "yes",
            "require",
        }
        ssl_arg = ssl.create_default_context() if wants_ssl else None

        parsed = parsed._replace(query=urlencode(query))
        return urlunparse(parsed), ssl_arg
