from typing import Optional


class StorefrontError(Exception):
    """Base class for every error the storefront raises on purpose."""

    status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class CatalogError(StorefrontError):
    status = 502


class NotConfigured(CatalogError):
    status = 409

    def __init__(self, message: str = "Digiflazz API not configured"):
        super().__init__(message)


class RemoteError(CatalogError):
    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class ProtocolError(CatalogError):
    def __init__(self, message: str, rc: Optional[str] = None):
        super().__init__(message)
        self.rc = rc


class EmptyCatalog(CatalogError):
    def __init__(self, message: str = "Digiflazz account has no products"):
        super().__init__(message)


class NoActiveProducts(CatalogError):
    def __init__(self, message: str = "No active products available in the Digiflazz account"):
        super().__init__(message)


class UnrecognizedShape(CatalogError):
    def __init__(self, message: str = "Unexpected response format from Digiflazz API"):
        super().__init__(message)


class NotFound(StorefrontError):
    status = 404


class ValidationError(StorefrontError):
    status = 400

    def __init__(self, message: str, errors: Optional[dict] = None):
        super().__init__(message)
        self.errors = errors or {}


class AuthenticationError(StorefrontError):
    status = 401
