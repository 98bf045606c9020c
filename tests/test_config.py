"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from core.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("LOG_LEVEL", "STORAGE_BACKEND", "REDIS_URL", "REENTRY_POLICY",
                 "DELAY_SCHEDULER", "SCHEDULER_JOBSTORE_URL", "COLLABORATOR_TIMEOUT"):
        monkeypatch.delenv(f"LEADFLOW_{name}", raising=False)


def test_defaults():
    settings = Settings()

    assert settings.storage_backend == "memory"
    assert settings.delay_scheduler == "memory"
    assert settings.reentry_policy == "restart"
    assert settings.state_update_retries == 10
    assert settings.is_durable is False


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("LEADFLOW_LOG_LEVEL", "debug")
    monkeypatch.setenv("LEADFLOW_REENTRY_POLICY", "skip_existing")
    monkeypatch.setenv("LEADFLOW_COLLABORATOR_TIMEOUT", "5")

    settings = Settings()

    assert settings.log_level == "DEBUG"
    assert settings.reentry_policy == "skip_existing"
    assert settings.collaborator_timeout == 5.0


def test_redis_backend_requires_url(monkeypatch):
    monkeypatch.setenv("LEADFLOW_STORAGE_BACKEND", "redis")

    with pytest.raises(ValidationError, match="LEADFLOW_REDIS_URL"):
        Settings()

    monkeypatch.setenv("LEADFLOW_REDIS_URL", "redis://localhost:6379/0")
    assert Settings().storage_backend == "redis"


@pytest.mark.parametrize("field, value", [
    ("log_level", "LOUD"),
    ("reentry_policy", "sometimes"),
    ("collaborator_timeout", 0),
])
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})
