import logging
import os
from pathlib import Path


def _default_level() -> int:
    name = os.environ.get("MAJSOUL_API_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level=None) -> logging.Logger:
    """Get a named logger with standard formatting.

    Example:
        logger = get_logger(__name__)
        logger.info("This is an info message.")

    The level defaults to MAJSOUL_API_LOG_LEVEL. When MAJSOUL_API_LOG_DIR is
    set, records are also written to ``<dir>/<name>.log``.

    Returns:
        logging.Logger: Configured logger instance.
    """
    if level is None:
        level = _default_level()
    logger = logging.getLogger(name)

    # avoid adding duplicate handlers if called repeatedly (common in tests)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    logs_dir = os.environ.get("MAJSOUL_API_LOG_DIR")
    filehandler = None
    if logs_dir:
        try:
            Path(logs_dir).mkdir(parents=True, exist_ok=True)
            filehandler = logging.FileHandler(str(Path(logs_dir) / f"{name}.log"), encoding="utf-8")
        except OSError:
            # unwritable log dir: stream only
            filehandler = None

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s     || %(name)s \n%(levelname)s   || %(message)s \n',
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    if filehandler is not None:
        filehandler.setFormatter(formatter)
        logger.addHandler(filehandler)

    logger.setLevel(level)
    # stop passing records to the root logger (avoid duplicated messages)
    logger.propagate = False
    logger.debug("'%s' initialized with level %s", name, logging.getLevelName(level))
    return logger
