#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Exceptions raised by the site selection workflow."""


class SiteSelectionError(Exception):
    """Base class for all site selection failures."""


class InputDataError(SiteSelectionError, ValueError):
    """Input table is malformed: missing columns, bad values, unknown ids."""


class DegenerateDataError(SiteSelectionError, ValueError):
    """Input is well formed but carries no usable information."""


class InsufficientDataError(DegenerateDataError):
    """Too few complete rows for the requested statistic."""


class ConvergenceError(SiteSelectionError, RuntimeError):
    """The likelihood optimizer did not reach a stable optimum."""

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result


class SamplingError(SiteSelectionError, ValueError):
    """Invalid sample size or sampling weights."""


class ConfigError(SiteSelectionError, ValueError):
    """Configuration file contains unknown or invalid settings."""
