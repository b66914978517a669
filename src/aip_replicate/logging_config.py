# ABOUTME: Logging setup for hosts embedding the packaging engine
# ABOUTME: Attaches console and optional rotating file handlers to the aip_replicate logger
import logging
import logging.handlers

from aip_replicate.config import ReplicateConfig

LOGGER_NAME = "aip_replicate"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def setup_logging(config: ReplicateConfig) -> logging.Logger:
    """Configure the package logger from ``config.log_level`` and ``config.log_file``.

    Calling it again replaces the handlers installed by the previous call.

    Returns:
        The configured ``aip_replicate`` logger
    """
    level = config.resolve_log_level()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    log_file = config.resolve_log_file()
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    logger.debug(f"Logging initialized at {logging.getLevelName(level)} level")
    return logger
