import uvicorn
import logging
from config import Config
from api.routes import create_app

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


def main():
    logger.info("=" * 50)
    logger.info("Rack Quote Service")
    logger.info("=" * 50)
    logger.info(f"API: http://{Config.API_HOST}:{Config.API_PORT}")
    logger.info(f"Docs: http://{Config.API_HOST}:{Config.API_PORT}/docs")
    logger.info(f"Remote sync: {'enabled' if Config.remote_configured() else 'local-only'}")
    logger.info("=" * 50)

    uvicorn.run(
        create_app(),
        host=Config.API_HOST,
        port=Config.API_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
