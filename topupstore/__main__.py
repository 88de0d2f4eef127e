import asyncio
import os

from dotenv import load_dotenv

from .utils.logger import logger


async def serve_api() -> None:
    from .services.web_server import StorefrontServer

    server = StorefrontServer()
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    load_dotenv()
    token = (os.getenv("DISCORD_TOKEN") or "").strip()
    if token:
        from .bot import StorefrontBot

        StorefrontBot().run(token, log_handler=None)
        return

    logger.info("DISCORD_TOKEN not set; running the storefront API without the admin bot.")
    try:
        asyncio.run(serve_api())
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    main()
