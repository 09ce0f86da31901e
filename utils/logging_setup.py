import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging for scripts and workers.

    ``level`` defaults to ``SOURCEWISE_LOG_LEVEL`` (INFO when unset). When
    ``log_file`` is given a file handler is added next to the console one.
    """

    resolved = level or os.environ.get("SOURCEWISE_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = getattr(logging, resolved.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=resolved, format=LOG_FORMAT, handlers=handlers, force=True)
