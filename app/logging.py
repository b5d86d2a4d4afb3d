"""Logging configuration: uvicorn and app logger levels on a single stdout handler."""
import logging
import sys


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # "marketplace" is the HTTP layer, "app.*" the services
    logging.getLogger("marketplace").setLevel(level)
    logging.getLogger("app").setLevel(level)
    # Stripe client request lines are noise at INFO
    logging.getLogger("stripe").setLevel(logging.WARNING)
