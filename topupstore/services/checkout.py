import re
from typing import Any, Dict, Optional

from ..errors import ValidationError

PAYMENT_METHODS: Dict[str, Dict[str, Any]] = {
    "ovo": {"name": "OVO", "fee": 0},
    "dana": {"name": "DANA", "fee": 0},
    "gopay": {"name": "GoPay", "fee": 0},
    "bank_transfer": {"name": "Transfer Bank", "fee": 2500},
    "credit_card": {"name": "Kartu Kredit", "fee": 3000},
}
PHONE_PATTERN = re.compile(r"^08\d{8,12}$")


def _check_identifier(value: str, required: bool, label: str, fmt: Optional[str], min_len: Any, max_len: Any) -> Optional[str]:
    if not required:
        return None
    if not value.strip():
        return f"{label} wajib diisi"
    if min_len and len(value) < int(min_len):
        return f"{label} minimal {min_len} karakter"
    if max_len and len(value) > int(max_len):
        return f"{label} maksimal {max_len} karakter"
    if fmt == "numeric" and not value.isdigit():
        return f"{label} hanya boleh berisi angka"
    return None


def validate_purchase_input(
    game_id_config: Optional[Dict[str, Any]],
    game_id: str,
    server_id: str,
    user_phone: str,
) -> Dict[str, str]:
    """Return field -> message for every rule the checkout input breaks."""
    config = game_id_config or {}
    errors: Dict[str, str] = {}

    game_id_error = _check_identifier(
        game_id,
        bool(config.get("requiresGameId")),
        str(config.get("gameIdLabel") or "Game ID"),
        config.get("gameIdFormat"),
        config.get("gameIdMinLength"),
        config.get("gameIdMaxLength"),
    )
    if game_id_error:
        errors["gameId"] = game_id_error

    server_id_error = _check_identifier(
        server_id,
        bool(config.get("requiresServerId")),
        str(config.get("serverIdLabel") or "Server ID"),
        config.get("serverIdFormat"),
        config.get("serverIdMinLength"),
        config.get("serverIdMaxLength"),
    )
    if server_id_error:
        errors["serverId"] = server_id_error

    if not user_phone.strip():
        errors["userPhone"] = "Nomor HP wajib diisi"
    elif not PHONE_PATTERN.match(user_phone):
        errors["userPhone"] = "Format nomor HP tidak valid (contoh: 081234567890)"

    return errors


def build_checkout(product: Dict[str, Any], payload: Dict[str, Any], now_ms: int) -> Dict[str, Any]:
    """Validate a checkout request against a visible product and price it.

    Returns the transaction fields the ledger expects; raises
    ValidationError listing every failing field.
    """
    variant_id = str(payload.get("variantId") or "").strip()
    variant = next((item for item in product.get("variants", []) if str(item.get("id")) == variant_id), None)
    if variant is None:
        raise ValidationError("variant not available", {"variantId": "Varian tidak tersedia"})

    payment_method = str(payload.get("paymentMethod") or "").strip().lower()
    method = PAYMENT_METHODS.get(payment_method)

    user_name = str(payload.get("userName") or "").strip()
    user_email = str(payload.get("userEmail") or "").strip()
    user_phone = str(payload.get("userPhone") or "").strip()
    game_id = str(payload.get("gameId") or "").strip()
    server_id = str(payload.get("serverId") or "").strip()

    errors = validate_purchase_input(product.get("gameIdConfig"), game_id, server_id, user_phone)
    if not user_name:
        errors["userName"] = "Mohon isi nama lengkap"
    if method is None:
        errors["paymentMethod"] = "Metode pembayaran tidak valid"
    if errors:
        raise ValidationError("invalid checkout input", errors)

    return {
        "userId": str(payload.get("userId") or f"user-{now_ms}"),
        "userName": user_name,
        "userEmail": user_email or None,
        "userPhone": user_phone,
        "gameId": game_id,
        "serverId": server_id or None,
        "productId": product["id"],
        "variantId": variant["id"],
        "productName": product.get("name", ""),
        "variantName": variant.get("amount", ""),
        "amount": variant["price"] + method["fee"],
        "paymentMethod": payment_method,
        "referenceId": f"REF-{now_ms}",
    }
