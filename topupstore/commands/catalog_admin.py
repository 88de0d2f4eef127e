from typing import List, Literal, Optional

import discord
from discord import app_commands

from ..errors import CatalogError, StorefrontError
from ..utils.base_cog import BaseCog
from ..utils.constants import Colors
from ..utils.embeds import EmbedUtils
from ..utils.formatting import format_currency, format_date
from ..utils.logger import logger


class CatalogAdmin(BaseCog):
    async def product_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        products = await self.storefront.catalog.search_products(current)
        return [
            app_commands.Choice(name=str(product.get("name") or product["id"])[:100], value=product["id"])
            for product in products[:25]
        ]

    async def _reject_non_admin(self, interaction: discord.Interaction) -> bool:
        permissions = getattr(interaction.user, "guild_permissions", None)
        if permissions is not None and permissions.administrator:
            return False
        await interaction.response.send_message("Admin only.", ephemeral=True)
        return True

    @app_commands.command(name="catalog-sync", description="Sync the catalog from the Digiflazz price list")
    async def catalog_sync(self, interaction: discord.Interaction):
        if await self._reject_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        try:
            result = await self.storefront.catalog.sync()
        except CatalogError as exc:
            await interaction.followup.send(embed=EmbedUtils.error("Sync Failed", exc.message), ephemeral=True)
            return

        if result.stale:
            embed = EmbedUtils.warning(
                "Using Cached Catalog",
                f"Digiflazz is unavailable ({result.error.message}). Serving {len(result.products)} cached products.",
            )
        else:
            embed = EmbedUtils.success("Catalog Synced", f"Synced {len(result.products)} products from Digiflazz.")
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="catalog-info", description="Show catalog sync status")
    async def catalog_info(self, interaction: discord.Interaction):
        if await self._reject_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        catalog = self.storefront.catalog
        info = await catalog.last_sync_info()
        credentials = await catalog.get_credentials()
        products = await catalog.get_products_for_admin()
        visible = await catalog.get_products()

        embed = discord.Embed(title="Catalog Status", color=Colors.INFO)
        embed.add_field(name="Digiflazz", value="Configured" if credentials["isConfigured"] else "Not configured", inline=True)
        embed.add_field(name="Last Sync", value=format_date(info["lastSync"]) if info["lastSync"] else "Never", inline=True)
        embed.add_field(name="Source", value="Synced cache" if info["hasCache"] else "Fallback catalog", inline=True)
        embed.add_field(name="Products", value=f"{len(visible)} visible / {len(products)} total", inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="set-price", description="Set a custom selling price for a variant")
    @app_commands.describe(product_id="Product", variant_id="Variant SKU code", price="New selling price in IDR")
    @app_commands.autocomplete(product_id=product_autocomplete)
    async def set_price(self, interaction: discord.Interaction, product_id: str, variant_id: str, price: int):
        if await self._reject_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        try:
            await self.storefront.catalog.get_variant_for_admin(product_id, variant_id)
            amount = await self.storefront.catalog.overrides.save_custom_price(product_id, variant_id, price)
        except StorefrontError as exc:
            await interaction.followup.send(embed=EmbedUtils.error("Update Failed", exc.message), ephemeral=True)
            return

        logger.info(f"{interaction.user} set price of {product_id}-{variant_id} to {amount}")
        await interaction.followup.send(
            embed=EmbedUtils.success("Price Updated", f"`{variant_id}` now sells for {format_currency(amount)}."),
            ephemeral=True,
        )

    @app_commands.command(name="set-status", description="Show or hide a product or one of its variants")
    @app_commands.describe(product_id="Product", status="New status", variant_id="Optional variant SKU code")
    @app_commands.autocomplete(product_id=product_autocomplete)
    async def set_status(
        self,
        interaction: discord.Interaction,
        product_id: str,
        status: Literal["active", "inactive"],
        variant_id: Optional[str] = None,
    ):
        if await self._reject_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        overrides = self.storefront.catalog.overrides
        try:
            if variant_id:
                await self.storefront.catalog.get_variant_for_admin(product_id, variant_id)
                await overrides.update_variant_status(product_id, variant_id, status)
                target = f"`{product_id}` / `{variant_id}`"
            else:
                await self.storefront.catalog.get_product_for_admin(product_id)
                await overrides.update_product_status(product_id, status)
                target = f"`{product_id}`"
        except StorefrontError as exc:
            await interaction.followup.send(embed=EmbedUtils.error("Update Failed", exc.message), ephemeral=True)
            return

        await interaction.followup.send(
            embed=EmbedUtils.success("Status Updated", f"{target} is now **{status}**."), ephemeral=True
        )

    @app_commands.command(name="transaction", description="Look up a transaction by id")
    @app_commands.describe(transaction_id="Transaction id, e.g. txn-1700000000000-ab12")
    async def transaction(self, interaction: discord.Interaction, transaction_id: str):
        if await self._reject_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        try:
            row = await self.storefront.ledger.get(transaction_id.strip())
        except StorefrontError as exc:
            await interaction.followup.send(embed=EmbedUtils.error("Not Found", exc.message), ephemeral=True)
            return

        embed = discord.Embed(title=f"Transaction {row['id']}", color=Colors.PRIMARY)
        embed.add_field(name="Status", value=str(row.get("status")), inline=True)
        embed.add_field(name="Amount", value=format_currency(row.get("amount")), inline=True)
        embed.add_field(name="Payment", value=str(row.get("paymentMethod") or "N/A"), inline=True)
        embed.add_field(name="Product", value=f"{row.get('productName')} - {row.get('variantName')}"[:1024], inline=False)
        embed.add_field(name="Buyer", value=str(row.get("userName") or "N/A"), inline=True)
        embed.add_field(name="Game ID", value=f"`{row.get('gameId') or 'N/A'}`", inline=True)
        embed.add_field(name="Created", value=format_date(row.get("createdAt")), inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(CatalogAdmin(bot))
