import logging

from core.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is controlled by SQLALCHEMY_ECHO, keep the engine logger quiet otherwise
    if not settings.SQLALCHEMY_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
