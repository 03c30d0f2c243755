import logging
from typing import Optional

LOGGER_NAME = "elastic_projection"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
# The optimiser runs on a worker thread; file logs name it so that records
# from the CLI thread and the worker can be told apart.
FILE_LOG_FORMAT = "%(asctime)s - %(threadName)s - %(levelname)s - %(message)s"


def setup_logging(
    log_file: Optional[str] = None,
    *,
    quiet: bool = False,
    debug: bool = False,
) -> logging.Logger:
    """Configure and return the shared `elastic_projection` logger.

    Nothing is written to disk unless `log_file` is given. Calling this again
    replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger(LOGGER_NAME)
    # pytest's caplog hooks the root logger, so records must keep propagating
    # even when console output is suppressed.
    logger.propagate = True

    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="w")
        except OSError as exc:
            logger.warning("Could not open log file '%s': %s", log_file, exc)
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
            logger.addHandler(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)

    return logger
