#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Logging setup for the site selection run."""
from __future__ import annotations
import logging

NOISY_LOGGERS = ("matplotlib", "PIL", "fiona", "pyogrio", "pymc", "pytensor")


def setup_logging(level: str = "INFO", fmt: str | None = None) -> None:
    """Configure the root logger once; later calls keep the existing handlers."""
    logger = logging.getLogger()
    if logger.handlers:
        return  # already configured
    lvl = getattr(logging, level.upper(), logging.INFO)
    fmt = fmt or "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    logging.basicConfig(level=lvl, format=fmt)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
