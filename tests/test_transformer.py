import json

import pytest

from topupstore.services.brands import BrandTable
from topupstore.services.transformer import brand_key, extract_amount, selling_price, transform_price_list


def test_known_brand_gets_profile_and_sorted_variants(brands, price_list):
    result = transform_price_list(price_list, brands)
    products = {product["id"]: product for product in result.products}

    ml = products["mobile-legends"]
    assert ml["name"] == "Mobile Legends Diamonds"
    assert ml["category"] == "moba"
    assert ml["code"] == "MOBILE-LEGENDS"
    assert ml["description"] == "Top up Diamonds untuk Mobile Legends"
    assert ml["isPopular"] is True
    assert ml["status"] == "active"
    assert ml["type"] == "prepaid"
    assert [variant["id"] for variant in ml["variants"]] == ["ML5", "ML86", "ML172"]

    config = ml["gameIdConfig"]
    assert config["requiresServerId"] is True
    assert config["gameIdFormat"] == "numeric"
    assert (config["gameIdMinLength"], config["gameIdMaxLength"]) == (6, 12)
    assert (config["serverIdMinLength"], config["serverIdMaxLength"]) == (4, 4)


def test_variant_fields(brands, price_list):
    result = transform_price_list(price_list, brands)
    ml = next(product for product in result.products if product["id"] == "mobile-legends")
    variant = next(item for item in ml["variants"] if item["id"] == "ML86")

    assert variant == {
        "id": "ML86",
        "name": "Mobile Legends 86 Diamond",
        "amount": "86 Diamonds",
        "price": 22000,
        "originalPrice": 20000,
        "code": "ML86",
        "status": "active",
    }


def test_unknown_brand_uses_defaults(brands, price_list):
    result = transform_price_list(price_list, brands)
    product = next(item for item in result.products if item["id"] == "somenewgame")

    assert product["category"] == "rpg"
    assert product["name"] == "SomeNewGame Credits"
    assert product["isPopular"] is False
    assert product["gameIdConfig"]["gameIdFormat"] == "alphanumeric"
    assert product["gameIdConfig"]["gameIdMinLength"] == 3
    assert product["gameIdConfig"]["gameIdMaxLength"] == 20
    assert product["gameIdConfig"]["requiresServerId"] is False
    assert product["variants"][0]["price"] == 1357


@pytest.mark.parametrize(
    "buyer_status, seller_status",
    [(False, True), (True, False), ("true", True), (1, True), (None, True)],
)
def test_records_without_both_flags_true_are_dropped(brands, record, buyer_status, seller_status):
    records = [
        record("Free Fire", "Free Fire 70 Diamond", 10000, "FF70"),
        record("Free Fire", "Free Fire 140 Diamond", 20000, "FF140", buyer_status, seller_status),
    ]
    result = transform_price_list(records, brands)

    assert [variant["id"] for variant in result.products[0]["variants"]] == ["FF70"]
    assert result.skipped == 1


def test_missing_status_flags_are_dropped(brands, record):
    item = record("Free Fire", "Free Fire 70 Diamond", 10000, "FF70")
    del item["seller_product_status"]
    result = transform_price_list([item], brands)

    assert result.products == []
    assert result.no_active_products is True


def test_empty_input_is_not_reported_as_no_active_products(brands):
    result = transform_price_list([], brands)
    assert result.products == []
    assert result.no_active_products is False


def test_malformed_records_are_skipped(brands, record):
    records = [
        "not a record",
        record("", "Nameless", 1000, "X1"),
        record("Free Fire", "Free Fire 5 Diamond", "abc", "FF5"),
        record("Free Fire", "Free Fire 10 Diamond", 2000, ""),
        record("Free Fire", "Free Fire 70 Diamond", 10000, "FF70"),
    ]
    result = transform_price_list(records, brands)

    assert result.received == 5
    assert result.skipped == 4
    assert [variant["id"] for variant in result.products[0]["variants"]] == ["FF70"]


def test_transform_is_deterministic(brands, price_list):
    first = transform_price_list(price_list, brands).products
    second = transform_price_list(price_list, brands).products
    assert first == second


def test_brand_variants_with_spacing_share_one_product(brands, record):
    records = [
        record("Genshin Impact", "Genshin Impact 60 Crystal", 14000, "GI60"),
        record("Genshin  Impact", "Genshin Impact 300 Crystal", 70000, "GI300"),
    ]
    result = transform_price_list(records, brands)

    assert [product["id"] for product in result.products] == ["genshin-impact"]
    assert len(result.products[0]["variants"]) == 2
    assert result.products[0]["variants"][0]["amount"] == "60 Genesis Crystals"


@pytest.mark.parametrize(
    "base, expected",
    [(20000, 22000), (1500, 1650), (1234, 1357), (0, 0), ("14000", 15400)],
)
def test_selling_price_markup(base, expected):
    assert selling_price(base) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Mobile Legends 86 Diamond", "86 Diamonds"),
        ("PUBG Mobile 60 UC", "60 UC"),
        ("Genshin Impact 300 Crystal", "300 Genesis Crystals"),
        ("Valorant 125 Points", "125 Points"),
        ("Game 50 credit", "50 Credits"),
        ("Weekly Diamond Pass", "Weekly Diamond Pass"),
    ],
)
def test_extract_amount(name, expected):
    assert extract_amount(name) == expected


def test_brand_key():
    assert brand_key("Mobile Legends") == "mobile-legends"
    assert brand_key("PUBG  Mobile") == "pubg-mobile"


def test_keyword_rows_refine_category_only(brands):
    profile = brands.lookup("Honkai Star Rail")
    assert profile["category"] == "rpg"
    assert profile["currency"] == "Credits"

    assert brands.category("EA Sports FC") == "sports"
    assert brands.category("CSGO Skins") == "fps"
    assert brands.currency("PUBG Mobile") == "UC"


def test_lookup_returns_independent_copies(brands):
    first = brands.game_id_config("Mobile Legends")
    first["gameIdLabel"] = "changed"
    assert brands.game_id_config("Mobile Legends")["gameIdLabel"] == "User ID"


def test_brand_table_path_from_env(tmp_path, monkeypatch, record):
    table = {
        "default": {"category": "casual", "currency": "Coins", "image": "", "popular": False, "gameIdConfig": {}},
        "brands": [{"keywords": ["stumble"], "category": "party", "currency": "Gems", "popular": True}],
    }
    path = tmp_path / "brands.json"
    path.write_text(json.dumps(table), encoding="utf-8")
    monkeypatch.setenv("BRAND_TABLE_PATH", str(path))

    custom = BrandTable.load()
    result = transform_price_list([record("Stumble Guys", "Stumble Guys 100 Gems", 5000, "SG100")], custom)

    product = result.products[0]
    assert product["category"] == "party"
    assert product["name"] == "Stumble Guys Gems"
    assert product["isPopular"] is True
    assert custom.category("Other Game") == "casual"


def test_unreadable_brand_table_falls_back_to_bundled(tmp_path):
    table = BrandTable.load(str(tmp_path / "missing.json"))
    assert table.category("Mobile Legends") == "moba"


@pytest.mark.parametrize("price", ["NaN", "Infinity", "-inf", float("nan")])
def test_non_finite_prices_are_skipped(brands, record, price):
    records = [
        record("Free Fire", "Free Fire 5 Diamond", price, "FF5"),
        record("Free Fire", "Free Fire 70 Diamond", 10000, "FF70"),
    ]
    result = transform_price_list(records, brands)

    assert result.skipped == 1
    assert [variant["id"] for variant in result.products[0]["variants"]] == ["FF70"]


def test_only_non_finite_prices_means_no_active_products(brands, record):
    result = transform_price_list([record("Free Fire", "Free Fire 5 Diamond", "Infinity", "FF5")], brands)

    assert result.products == []
    assert result.no_active_products is True
