import fnmatch
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import discord
from aiohttp import web
from dotenv import load_dotenv

from ..errors import NotFound, StorefrontError, ValidationError
from ..utils.constants import Colors
from ..utils.formatting import format_currency, format_phone_number
from ..utils.logger import logger
from .admin_auth import AdminAuth
from .catalog import CatalogService
from .checkout import PAYMENT_METHODS, build_checkout
from .ledger import TransactionLedger
from .overrides import GAME_ID_OVERRIDES
from .reports import dashboard_stats, export_transactions_csv
from .storage import KeyValueStorage

PUBLIC_ADMIN_PATHS = {"/admin/login"}


class StorefrontServer:
    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        catalog: Optional[CatalogService] = None,
        ledger: Optional[TransactionLedger] = None,
        auth: Optional[AdminAuth] = None,
        bot: Optional[discord.Client] = None,
    ):
        load_dotenv()
        self.bot = bot
        self.host = os.getenv("API_HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT") or os.getenv("API_PORT") or "8080")
        raw_origins = (os.getenv("FRONTEND_ORIGINS") or "http://localhost:5173").strip()
        self.allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        if not self.allowed_origins:
            self.allowed_origins = ["http://localhost:5173"]
        self.order_channel_id = self._to_int(os.getenv("ORDER_CHANNEL_ID"), default=None)

        self.storage = storage or KeyValueStorage()
        self.catalog = catalog or CatalogService(self.storage)
        self.ledger = ledger or TransactionLedger(self.storage)
        self.auth = auth or AdminAuth(self.storage)

        self.app = web.Application(
            middlewares=[
                self._error_middleware,
                self._cors_middleware,
                self._auth_middleware,
            ]
        )
        self.app.router.add_route("OPTIONS", "/{tail:.*}", self._handle_options)
        self.app.router.add_get("/shop/health", self.shop_health)
        self.app.router.add_get("/shop/products", self.shop_products)
        self.app.router.add_get("/shop/products/{product_id}", self.shop_product)
        self.app.router.add_get("/shop/payment-methods", self.shop_payment_methods)
        self.app.router.add_post("/shop/transactions", self.shop_create_transaction)
        self.app.router.add_get("/shop/transactions/{transaction_id}", self.shop_get_transaction)
        self.app.router.add_post("/admin/login", self.admin_login)
        self.app.router.add_post("/admin/logout", self.admin_logout)
        self.app.router.add_get("/admin/products", self.admin_products)
        self.app.router.add_get("/admin/products/{product_id}", self.admin_product)
        self.app.router.add_post("/admin/sync", self.admin_sync)
        self.app.router.add_get("/admin/sync-info", self.admin_sync_info)
        self.app.router.add_delete("/admin/catalog", self.admin_clear_catalog)
        self.app.router.add_put("/admin/products/{product_id}/status", self.admin_set_product_status)
        self.app.router.add_put("/admin/products/{product_id}/image", self.admin_set_product_image)
        self.app.router.add_put("/admin/products/{product_id}/game-id-config", self.admin_set_game_id_config)
        self.app.router.add_delete("/admin/products/{product_id}/game-id-config", self.admin_clear_game_id_config)
        self.app.router.add_put(
            "/admin/products/{product_id}/variants/{variant_id}/price", self.admin_set_variant_price
        )
        self.app.router.add_put(
            "/admin/products/{product_id}/variants/{variant_id}/status", self.admin_set_variant_status
        )
        self.app.router.add_get("/admin/settings/digiflazz", self.admin_get_settings)
        self.app.router.add_put("/admin/settings/digiflazz", self.admin_set_settings)
        self.app.router.add_get("/admin/transactions", self.admin_transactions)
        self.app.router.add_get("/admin/transactions/export", self.admin_export_transactions)
        self.app.router.add_get("/admin/summary", self.admin_summary)
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

        self.runner: Optional[web.AppRunner] = None

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except StorefrontError as exc:
            body: Dict[str, Any] = {"ok": False, "message": exc.message, "error": exc.__class__.__name__}
            if isinstance(exc, ValidationError) and exc.errors:
                body["errors"] = exc.errors
            response = web.json_response(body, status=exc.status)
        except Exception as exc:
            logger.exception(f"Storefront API error on {request.path}: {exc}")
            response = web.json_response({"ok": False, "message": "internal server error"}, status=500)
        # Error responses bypass the CORS middleware.
        self._apply_cors_headers(request, response)
        return response

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler):
        response = await handler(request)
        self._apply_cors_headers(request, response)
        return response

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if request.method == "OPTIONS":
            return await handler(request)
        if not request.path.startswith("/admin/") or request.path in PUBLIC_ADMIN_PATHS:
            return await handler(request)

        auth_header = request.headers.get("authorization", "").strip()
        token = auth_header[7:].strip() if auth_header.lower().startswith("bearer ") else ""
        if not await self.auth.is_authenticated(token):
            return web.json_response({"ok": False, "message": "unauthorized"}, status=401)
        return await handler(request)

    async def _handle_options(self, request: web.Request):
        return web.Response(status=204)

    def _apply_cors_headers(self, request: web.Request, response: web.StreamResponse) -> None:
        origin = request.headers.get("Origin")

        if "*" in self.allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin and self._is_origin_allowed(origin):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        else:
            response.headers["Access-Control-Allow-Origin"] = self.allowed_origins[0]

        response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,PUT,OPTIONS"
        request_headers = request.headers.get("Access-Control-Request-Headers")
        response.headers["Access-Control-Allow-Headers"] = request_headers or "Content-Type,Authorization"

    def _is_origin_allowed(self, origin: str) -> bool:
        for allowed in self.allowed_origins:
            if allowed == origin:
                return True
            if "*" in allowed and fnmatch.fnmatch(origin, allowed):
                return True
        return False

    async def _on_startup(self, app: web.Application) -> None:
        await self.storage.start()
        await self.ledger.recover()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.ledger.close()
        await self.storage.close()

    async def start(self) -> None:
        if self.runner is not None:
            return

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(f"Storefront API listening on {self.host}:{self.port} (storage: {self.storage.backend_name})")

    async def stop(self) -> None:
        if self.runner is None:
            return

        await self.runner.cleanup()
        self.runner = None
        logger.info("Storefront API stopped.")

    async def shop_health(self, request: web.Request):
        credentials = await self.catalog.get_credentials()
        sync_info = await self.catalog.last_sync_info()
        return web.json_response(
            {
                "ok": True,
                "storageBackend": self.storage.backend_name,
                "digiflazzConfigured": credentials["isConfigured"],
                "lastSync": sync_info["lastSync"],
                "hasCache": sync_info["hasCache"],
            }
        )

    async def shop_products(self, request: web.Request):
        category = str(request.query.get("category", "")).strip() or None
        products = await self.catalog.get_products(category)
        return web.json_response({"ok": True, "products": products})

    async def shop_product(self, request: web.Request):
        product = await self.catalog.get_product(str(request.match_info["product_id"]))
        return web.json_response({"ok": True, "product": product})

    async def shop_payment_methods(self, request: web.Request):
        methods = [{"id": key, **value} for key, value in PAYMENT_METHODS.items()]
        return web.json_response({"ok": True, "methods": methods})

    async def shop_create_transaction(self, request: web.Request):
        payload = await self._safe_json(request)
        if payload is None:
            return web.json_response({"ok": False, "message": "invalid json body"}, status=400)

        product_id = str(payload.get("productId") or "").strip()
        if not product_id:
            return web.json_response({"ok": False, "message": "productId is required"}, status=400)

        product = await self.catalog.get_product(product_id)
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        transaction = await self.ledger.create(build_checkout(product, payload, now_ms))
        await self._send_order_log(transaction)
        return web.json_response({"ok": True, "transaction": transaction}, status=201)

    async def shop_get_transaction(self, request: web.Request):
        transaction = await self.ledger.get(str(request.match_info["transaction_id"]).strip())
        return web.json_response({"ok": True, "transaction": transaction})

    async def admin_login(self, request: web.Request):
        payload = await self._safe_json(request)
        if payload is None:
            return web.json_response({"ok": False, "message": "invalid json body"}, status=400)
        token = await self.auth.login(str(payload.get("username", "")), str(payload.get("password", "")))
        return web.json_response({"ok": True, "token": token})

    async def admin_logout(self, request: web.Request):
        await self.auth.logout()
        return web.json_response({"ok": True})

    async def admin_products(self, request: web.Request):
        category = str(request.query.get("category", "")).strip() or None
        query = str(request.query.get("q", "")).strip()
        products = await self.catalog.search_products(query, category)
        return web.json_response({"ok": True, "products": products})

    async def admin_product(self, request: web.Request):
        product = await self.catalog.get_product_for_admin(str(request.match_info["product_id"]))
        return web.json_response({"ok": True, "product": product})

    async def admin_sync(self, request: web.Request):
        result = await self.catalog.sync()
        return web.json_response({"ok": True, **result.to_dict(), "products": result.products})

    async def admin_sync_info(self, request: web.Request):
        return web.json_response({"ok": True, **await self.catalog.last_sync_info()})

    async def admin_clear_catalog(self, request: web.Request):
        await self.catalog.clear_synced_products()
        return web.json_response({"ok": True})

    async def admin_set_product_status(self, request: web.Request):
        product = await self._admin_product(request)
        payload = await self._require_json(request)
        await self.catalog.overrides.update_product_status(product["id"], payload.get("status"))
        return web.json_response({"ok": True, "product": await self.catalog.get_product_for_admin(product["id"])})

    async def admin_set_product_image(self, request: web.Request):
        product = await self._admin_product(request)
        payload = await self._require_json(request)
        await self.catalog.overrides.save_product_image(product["id"], payload.get("image"))
        return web.json_response({"ok": True, "product": await self.catalog.get_product_for_admin(product["id"])})

    async def admin_set_game_id_config(self, request: web.Request):
        product = await self._admin_product(request)
        payload = await self._require_json(request)
        await self.catalog.overrides.save_game_id_config(product["id"], payload.get("config", payload))
        return web.json_response({"ok": True, "product": await self.catalog.get_product_for_admin(product["id"])})

    async def admin_clear_game_id_config(self, request: web.Request):
        product = await self._admin_product(request)
        cleared = await self.catalog.overrides.clear_entry(GAME_ID_OVERRIDES, product["id"])
        return web.json_response(
            {"ok": True, "cleared": cleared, "product": await self.catalog.get_product_for_admin(product["id"])}
        )

    async def admin_set_variant_price(self, request: web.Request):
        product_id, variant_id = await self._admin_variant(request)
        payload = await self._require_json(request)
        await self.catalog.overrides.save_custom_price(product_id, variant_id, payload.get("price"))
        return web.json_response({"ok": True, "product": await self.catalog.get_product_for_admin(product_id)})

    async def admin_set_variant_status(self, request: web.Request):
        product_id, variant_id = await self._admin_variant(request)
        payload = await self._require_json(request)
        await self.catalog.overrides.update_variant_status(product_id, variant_id, payload.get("status"))
        return web.json_response({"ok": True, "product": await self.catalog.get_product_for_admin(product_id)})

    async def admin_get_settings(self, request: web.Request):
        credentials = await self.catalog.get_credentials()
        api_key = credentials["apiKey"]
        masked = f"{'*' * max(0, len(api_key) - 4)}{api_key[-4:]}" if api_key else ""
        return web.json_response(
            {
                "ok": True,
                "config": {
                    "username": credentials["username"],
                    "apiKey": masked,
                    "isConfigured": credentials["isConfigured"],
                },
            }
        )

    async def admin_set_settings(self, request: web.Request):
        payload = await self._require_json(request)
        config = await self.catalog.set_credentials(payload.get("username", ""), payload.get("apiKey", ""))
        return web.json_response({"ok": True, "config": {"username": config["username"], "isConfigured": config["isConfigured"]}})

    async def admin_transactions(self, request: web.Request):
        transactions = await self.ledger.list(request.query.get("status"), request.query.get("q"))
        return web.json_response({"ok": True, "transactions": transactions})

    async def admin_export_transactions(self, request: web.Request):
        transactions = await self.ledger.list(request.query.get("status"), request.query.get("q"))
        filename = f"transactions-{datetime.now(timezone.utc).date().isoformat()}.csv"
        return web.Response(
            text=export_transactions_csv(transactions),
            content_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    async def admin_summary(self, request: web.Request):
        transactions = await self.ledger.list()
        return web.json_response(
            {
                "ok": True,
                "metrics": dashboard_stats(transactions),
                "recentTransactions": transactions[:5],
            }
        )

    async def _admin_product(self, request: web.Request) -> Dict[str, Any]:
        return await self.catalog.get_product_for_admin(str(request.match_info["product_id"]))

    async def _admin_variant(self, request: web.Request) -> tuple:
        product_id = str(request.match_info["product_id"])
        variant_id = str(request.match_info["variant_id"])
        await self.catalog.get_variant_for_admin(product_id, variant_id)
        return product_id, variant_id

    async def _require_json(self, request: web.Request) -> Dict[str, Any]:
        payload = await self._safe_json(request)
        if payload is None:
            raise ValidationError("invalid json body")
        return payload

    async def _safe_json(self, request: web.Request) -> Optional[Dict[str, Any]]:
        try:
            body = await request.json()
        except Exception:
            return None
        if not isinstance(body, dict):
            return None
        return body

    async def _send_order_log(self, transaction: Dict[str, Any]) -> bool:
        if self.bot is None:
            return False
        channel = self._resolve_channel(self.order_channel_id)
        if channel is None:
            logger.warning("Order channel is not configured. Set ORDER_CHANNEL_ID.")
            return False

        embed = discord.Embed(title="New Top-Up Order", color=Colors.SUCCESS)
        embed.add_field(name="Transaction", value=f"`{transaction.get('id')}`", inline=True)
        embed.add_field(name="Total", value=format_currency(transaction.get("amount")), inline=True)
        embed.add_field(name="Payment", value=str(transaction.get("paymentMethod") or "N/A"), inline=True)
        embed.add_field(
            name="Item",
            value=f"{transaction.get('productName')} - {transaction.get('variantName')}"[:1024],
            inline=False,
        )
        game_id = str(transaction.get("gameId") or "")
        if transaction.get("serverId"):
            game_id = f"{game_id} ({transaction['serverId']})"
        embed.add_field(name="Game ID", value=f"`{game_id or 'N/A'}`", inline=True)
        embed.add_field(name="Buyer", value=str(transaction.get("userName") or "N/A")[:1024], inline=True)
        embed.add_field(name="Phone", value=format_phone_number(str(transaction.get("userPhone") or "")) or "N/A", inline=True)
        try:
            await channel.send(embed=embed)
        except discord.HTTPException as exc:
            logger.error(f"Failed to post order log for {transaction.get('id')}: {exc}")
            return False
        return True

    def _resolve_channel(self, channel_id: Optional[int]) -> Optional[discord.abc.Messageable]:
        if not channel_id or self.bot is None:
            return None

        channel = self.bot.get_channel(channel_id)
        if channel is not None and hasattr(channel, "send"):
            return channel

        for guild in self.bot.guilds:
            guild_channel = guild.get_channel(channel_id)
            if guild_channel is not None and hasattr(guild_channel, "send"):
                return guild_channel

        return None

    @staticmethod
    def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default
