import sys
from loguru import logger
from storefront.core.config import settings

log_format = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

_configured = False

def setup_logging(level: str | None = None):
    global _configured
    if _configured:
        return logger
    logger.remove()
    logger.add(sys.stderr, colorize=not settings.is_production, format=log_format,
               level=(level or settings.LOG_LEVEL).upper())
    _configured = True
    return logger
