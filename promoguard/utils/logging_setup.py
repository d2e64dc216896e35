from __future__ import annotations

import logging
import sys


def setup_logging(level: str, log_file: str | None = None) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream=sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )
    # rate-limit chatter from the gateway client
    logging.getLogger("discord.http").setLevel(max(numeric, logging.WARNING))
