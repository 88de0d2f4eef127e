import hashlib


def generate_signature(username: str, api_key: str, command: str = "pricelist") -> str:
    """Digiflazz request signature: hex MD5 of ``username + api_key + command``."""
    raw = f"{username}{api_key}{command}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()
