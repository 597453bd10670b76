import logging
from importlib import metadata

LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
}


def setup_logging(name, log_file=None, debug=0):
    """
    Set up logging configuration for a module

    Args:
        name (str): Logger name
        log_file (str, optional): Path to log file. If None, only console logging is used.
        debug (int): Debug level from the command line, 0 is quiet, 2 and up is DEBUG.

    Returns:
        logging.Logger: Configured logger instance
    """
    handlers = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=LEVELS.get(debug, logging.DEBUG),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    logger = logging.getLogger(name)

    return logger


def log_library_versions(logger):
    """
    Log versions of key libraries for debugging

    Args:
        logger (logging.Logger): Logger instance to use
    """
    libraries = ['pyserial', 'pynmea2', 'python-dotenv']

    for lib in libraries:
        try:
            version = metadata.version(lib)
            logger.debug(f"{lib} version: {version}")
        except metadata.PackageNotFoundError as e:
            logger.warning(f"Could not determine {lib} version: {e}")
