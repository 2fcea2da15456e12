from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Set the level of the `crewscope` logger tree.

    Notes:
    - Plain stdlib logging; uvicorn (or the embedding client) owns the handlers.
    - `CREWSCOPE_LOG_LEVEL=DEBUG` shows every scope decision and predicate denial.
    """

    normalized = level.upper()
    logging.getLogger("crewscope").setLevel(normalized)
    logging.getLogger("crewscope").propagate = True
