import asyncio
import sys
import logging
from dotenv import load_dotenv

from registry_core.config import RegistrySettings
from registry_core.infrastructure.database import create_engine, init_schema
from registry_core.application.registry import RegistryCore

logger = logging.getLogger(__name__)

async def main():
    # Load environment variables from .env file
    load_dotenv()
    settings = RegistrySettings.from_env()

    # Configure logging
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    if not settings.database_url:
        logger.error("DATABASE_URL is not set in the environment.")
        sys.exit(1)

    engine = create_engine(settings.database_url, echo=settings.echo_sql)
    registry = RegistryCore(engine, settings)

    try:
        await init_schema(engine)
        logger.info("Registry schema is up to date.")

        # Optional search query from the command line
        if len(sys.argv) > 1:
            result = await registry.search_engine.search(sys.argv[1])
            for match in result.search_matches:
                logger.info(f"name match: {match.name} - {match.description}")
            for match in result.keyword_matches:
                logger.info(f"keyword match: {match.name} - {match.description}")
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        sys.exit(1)
    finally:
        await registry.close()

if __name__ == "__main__":
    asyncio.run(main())
