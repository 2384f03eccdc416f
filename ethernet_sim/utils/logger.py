"""Console logging set up with loguru.

The package disables its own loggers on import; call `setup_logger` to see
them.
"""

import sys

from loguru import logger


def setup_logger(level: str = "INFO", colorize: bool = True):
    """Route the package's log records to stderr.

    Args:
        level: Minimum level to show.
        colorize: Whether to colour the console output.

    Returns:
        The configured loguru logger.
    """
    logger.remove()

    console_format = (
        "<green>{extra[sim_time]:>10}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
        "<level>{message}</level>"
    )

    logger.configure(extra={"sim_time": "-"})
    logger.add(sys.stderr, format=console_format, level=level, colorize=colorize)
    logger.enable("ethernet_sim")
    return logger


def bind_clock(env):
    """Stamp every record with the current simulated time of `env`."""

    def patch(record):
        record["extra"]["sim_time"] = f"{env.now:.3f}"

    logger.configure(patcher=patch)
