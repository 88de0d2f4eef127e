from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web

from topupstore.services.brands import BrandTable
from topupstore.services.catalog import CatalogService
from topupstore.services.digiflazz import DigiflazzClient
from topupstore.services.storage import KeyValueStorage

ISOLATED_ENV = (
    "DIGIFLAZZ_API_URL",
    "DIGIFLAZZ_USERNAME",
    "DIGIFLAZZ_API_KEY",
    "DIGIFLAZZ_TIMEOUT_SECONDS",
    "DATABASE_URL",
    "SHOP_STORAGE_BACKEND",
    "SHOP_DATA_DIR",
    "SHOP_KV_TABLE",
    "BRAND_TABLE_PATH",
    "TRANSACTION_SETTLE_SECONDS",
    "ADMIN_USERNAME",
    "ADMIN_PASSWORD",
    "ORDER_CHANNEL_ID",
    "FRONTEND_ORIGINS",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    # relative data directories land in the test sandbox
    monkeypatch.chdir(tmp_path)


@pytest.fixture
async def storage(tmp_path):
    store = KeyValueStorage(backend="json", data_dir=str(tmp_path / "kv"))
    await store.start()
    yield store
    await store.close()


@pytest.fixture
def brands():
    return BrandTable.load()


def make_record(
    brand: str,
    product_name: str,
    price: Any,
    sku: str,
    buyer_status: Any = True,
    seller_status: Any = True,
) -> Dict[str, Any]:
    return {
        "product_name": product_name,
        "category": "Games",
        "brand": brand,
        "type": "Umum",
        "seller_name": "Seller",
        "price": price,
        "buyer_sku_code": sku,
        "buyer_product_status": buyer_status,
        "seller_product_status": seller_status,
        "unlimited_stock": True,
        "stock": 0,
        "multi": True,
        "start_cut_off": "0:0",
        "end_cut_off": "0:0",
        "desc": "-",
    }


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def price_list() -> List[Dict[str, Any]]:
    return [
        make_record("Mobile Legends", "Mobile Legends 172 Diamond", 40000, "ML172"),
        make_record("Mobile Legends", "Mobile Legends 86 Diamond", 20000, "ML86"),
        make_record("Mobile Legends", "Mobile Legends 5 Diamond", 1500, "ML5"),
        make_record("Free Fire", "Free Fire 70 Diamond", 10000, "FF70"),
        make_record("SomeNewGame", "SomeNewGame Starter Pack", 1234, "SNG1"),
    ]


class StubClient(DigiflazzClient):
    """Digiflazz client whose price list is scripted by the test."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        super().__init__(username="buyer", api_key="secret")
        self.records = records or []
        self.error = error
        self.calls = 0

    async def fetch_price_list(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [dict(item) for item in self.records]


@pytest.fixture
def stub_client(price_list):
    return StubClient(price_list)


@pytest.fixture
def catalog(storage, brands, stub_client):
    return CatalogService(storage, client=stub_client, brands=brands)


class FakeDigiflazz:
    def __init__(self):
        self.status = 200
        self.payload: Any = {"data": []}
        self.raw_body: Optional[str] = None
        self.requests: List[Dict[str, Any]] = []

    async def handle(self, request: web.Request):
        self.requests.append(await request.json())
        if self.raw_body is not None:
            return web.Response(text=self.raw_body, status=self.status, content_type="text/html")
        return web.json_response(self.payload, status=self.status)


@pytest.fixture
async def digiflazz(aiohttp_server, monkeypatch):
    fake = FakeDigiflazz()
    app = web.Application()
    app.router.add_post("/v1/price-list", fake.handle)
    server = await aiohttp_server(app)
    monkeypatch.setenv("DIGIFLAZZ_API_URL", str(server.make_url("/v1/price-list")))
    return fake
