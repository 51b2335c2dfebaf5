"""Tests for logging setup."""

import logging

import pytest

from shipyard.logging import NOISY_LOGGERS, setup_logging


@pytest.mark.parametrize("verbose,level", [(True, logging.DEBUG), (False, logging.WARNING)])
def test_request_loggers_follow_verbosity(verbose, level):
    setup_logging(verbose=verbose)

    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == level
