# main.py
import asyncio
import logging
from aiohttp import web
from storefront.app import create_app
from storefront.config import Config, setup_logging

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        Config.validate()

        runner = web.AppRunner(create_app())
        await runner.setup()
        site = web.TCPSite(runner, Config.HOST, Config.PORT)
        await site.start()
        logger.info(f"Storefront listening on {Config.HOST}:{Config.PORT}")

        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
    except Exception as e:
        logger.error(f"Error starting storefront: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
