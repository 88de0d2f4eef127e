import base64
import hmac
import os
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from ..errors import AuthenticationError
from ..utils.logger import logger
from .storage import KeyValueStorage

ADMIN_TOKEN_KEY = "admin_token"


def _same(given: str, expected: str) -> bool:
    # compare_digest only accepts ASCII str, so compare the encoded bytes.
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class AdminAuth:
    """Single hardcoded admin account with an opaque, non-expiring token."""

    def __init__(self, storage: KeyValueStorage, username: Optional[str] = None, password: Optional[str] = None):
        load_dotenv()
        self.storage = storage
        self.username = (username or os.getenv("ADMIN_USERNAME") or "admin").strip()
        # Entered verbatim, so surrounding spaces are part of the password.
        self.password = password or os.getenv("ADMIN_PASSWORD") or "admin123"

    async def login(self, username: str, password: str) -> str:
        username_ok = _same(str(username or "").strip(), self.username)
        password_ok = _same(str(password or ""), self.password)
        if not (username_ok and password_ok):
            logger.warning(f"Failed admin login attempt for '{username}'")
            raise AuthenticationError("Invalid credentials")

        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        token = base64.b64encode(f"{self.username}:{stamp}".encode("utf-8")).decode("ascii")
        await self.storage.set(ADMIN_TOKEN_KEY, token)
        logger.info("Admin login successful.")
        return token

    async def logout(self) -> None:
        await self.storage.delete(ADMIN_TOKEN_KEY)

    async def is_authenticated(self, token: Optional[str]) -> bool:
        if not token:
            return False
        stored = await self.storage.get(ADMIN_TOKEN_KEY, default=None)
        if not isinstance(stored, str) or not stored:
            return False
        return _same(str(token), stored)
