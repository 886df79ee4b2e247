import logging
import os
from typing import Optional


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from ``LOG_LEVEL`` unless ``level`` is given."""
    resolved = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # The Stripe SDK logs every request at INFO.
    if resolved != "DEBUG":
        logging.getLogger("stripe").setLevel(logging.WARNING)
