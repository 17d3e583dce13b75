"""Logging setup shared by the command line entry points."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger with the terse CLI format.

    Import runs report per-entity summaries at INFO and every unresolved
    reference at WARNING; pass ``level=logging.DEBUG`` to also see fuzzy label
    matches. ``force=True`` replaces handlers installed earlier (tests, notebooks).
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
