"""
Logging setup for applications embedding the client
"""

import logging
import logging.handlers

from .config_manager import ClientConfiguration

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger('arsnova.core.logging')


def setup_logging(config: ClientConfiguration) -> logging.Logger:
    """
    Attach console and optional rotating file handlers to the ``arsnova`` logger.

    Calling it again replaces the handlers installed by a previous call.
    """
    root = logging.getLogger('arsnova')
    root.setLevel(config.log_level)

    for handler in list(root.handlers):
        if getattr(handler, '_arsnova_handler', False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._arsnova_handler = True  # type: ignore[attr-defined]
    root.addHandler(console_handler)

    if config.log_file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file_path,
            encoding='utf-8',
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler._arsnova_handler = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    logger.debug("Logging configured")
    return root
