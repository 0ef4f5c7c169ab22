from loguru import logger
from purchase_dash.config import get_config

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

class AppLogger:
    """Console sink for the dashboard client, leveled by get_config().log_level.

    The package owns exactly one loguru sink. A level change swaps that sink
    only; sinks added by the host application stay in place.
    """
    _sink_id = None
    _level = None

    def __init__(self) -> None:
        log_level = get_config().log_level.upper()
        if log_level != AppLogger._level:
            if AppLogger._sink_id is None:
                # First configuration replaces loguru's default stderr handler
                logger.remove()
            else:
                logger.remove(AppLogger._sink_id)
            AppLogger._sink_id = logger.add(sink=lambda msg: print(msg, end=""), level=log_level, format=LOG_FORMAT)
            AppLogger._level = log_level
        self.logger = logger

    def get_logger(self, name: str = None):
        """Get the configured logger instance.

        Args:
            name (str, optional): Name for the logger context. Defaults to None.
        Returns:
            loguru.Logger: The configured logger instance.
        """
        if name:
            return self.logger.bind(name=name)
        return self.logger

# Configure once at import
AppLogger()

def get_logger(name: str = None):
    """Get the application logger, following the current config's log level."""
    return AppLogger().get_logger(name)
