"""Tests for structured logging setup."""

import warnings

import pytest
import structlog

from core.config import Settings
from core.logging import configure_logging, run_context


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.mark.parametrize("log_format", ["console", "json"])
def test_configure_emits_no_deprecation_warnings(log_format):
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        configure_logging(Settings(log_format=log_format))

    assert structlog.is_configured()


def test_run_context_binds_and_unbinds_ids():
    with run_context("wf-1", "lead-1", "run-1"):
        assert structlog.contextvars.get_contextvars() == {
            "workflow_id": "wf-1",
            "lead_id": "lead-1",
            "run_id": "run-1",
        }

    assert structlog.contextvars.get_contextvars() == {}
