import logging
import sys
from typing import Optional

from app.settings import settings


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # one line per provider request is noise next to the invoker's attempt logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
