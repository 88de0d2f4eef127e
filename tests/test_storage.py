import json

from topupstore.services.storage import SCHEMA_VERSION, KeyValueStorage


async def test_values_are_written_in_a_versioned_envelope(storage):
    await storage.set("transactions", [{"id": "txn-1"}])

    raw = json.loads((storage.data_dir / "transactions.json").read_text(encoding="utf-8"))
    assert raw == {"schemaVersion": SCHEMA_VERSION, "value": [{"id": "txn-1"}]}
    assert await storage.get("transactions") == [{"id": "txn-1"}]


async def test_missing_key_returns_default(storage):
    assert await storage.get("nothing", default=[]) == []
    assert await storage.has("nothing") is False


async def test_corrupted_blob_is_cleared(storage):
    path = storage.data_dir / "custom_prices.json"
    path.write_text("{not json", encoding="utf-8")

    assert await storage.get("custom_prices", default={}) == {}
    assert not path.exists()


async def test_unknown_schema_version_is_cleared(storage):
    path = storage.data_dir / "digiflazz_products.json"
    path.write_text(json.dumps({"schemaVersion": 99, "value": [1]}), encoding="utf-8")

    assert await storage.get("digiflazz_products") is None
    assert not path.exists()


async def test_legacy_blob_is_migrated_and_rewritten(storage):
    storage.register_migration("legacy", lambda stored: {"items": stored})
    path = storage.data_dir / "legacy.json"
    path.write_text(json.dumps([1, 2]), encoding="utf-8")

    assert await storage.get("legacy") == {"items": [1, 2]}
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "schemaVersion": SCHEMA_VERSION,
        "value": {"items": [1, 2]},
    }


async def test_legacy_blob_without_migration_is_kept_as_is(storage):
    (storage.data_dir / "admin_token.json").write_text(json.dumps("dG9rZW4="), encoding="utf-8")
    assert await storage.get("admin_token") == "dG9rZW4="


async def test_failed_migration_clears_value(storage):
    def reject(stored):
        raise ValueError("bad layout")

    storage.register_migration("legacy", reject)
    (storage.data_dir / "legacy.json").write_text(json.dumps(5), encoding="utf-8")

    assert await storage.get("legacy", default="fallback") == "fallback"
    assert not (storage.data_dir / "legacy.json").exists()


async def test_delete_and_unsafe_keys(storage):
    await storage.set("../escape key", {"a": 1})
    assert (storage.data_dir / ".._escape_key.json").exists()

    await storage.delete("../escape key")
    assert await storage.get("../escape key") is None


def test_backend_selection(tmp_path, monkeypatch):
    monkeypatch.setenv("SHOP_KV_TABLE", "drop table;")
    auto_without_db = KeyValueStorage(data_dir=str(tmp_path), db_url="")
    assert auto_without_db.use_postgres is False
    assert auto_without_db.backend_name == "json"
    assert auto_without_db.table == "shop_kv"

    auto_with_db = KeyValueStorage(data_dir=str(tmp_path), db_url="postgres://localhost/shop")
    assert auto_with_db.use_postgres is True

    forced_json = KeyValueStorage(backend="json", data_dir=str(tmp_path), db_url="postgres://localhost/shop")
    assert forced_json.use_postgres is False


def test_postgres_dsn_normalization():
    dsn, ssl_arg = KeyValueStorage._normalize_postgres_dsn("postgresql://u:p@host:5432/db?sslmode=require")
    assert dsn == "postgres://u:p@host:5432/db"
    assert ssl_arg is not None

    dsn, ssl_arg = KeyValueStorage._normalize_postgres_dsn("postgres://u:p@host/db?application_name=shop")
    assert dsn == "postgres://u:p@host/db?application_name=shop"
    assert ssl_arg is None
