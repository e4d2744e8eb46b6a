"""
FILE: tests/conftest.py
Shared fixtures for rebalance tests.
"""

from pathlib import Path

import pytest

from src.api.routers.rebalance_jobs import reset_rebalance_job_service_for_tests
from src.core.profiles import resolve_profile
from tests.factories import layer_profile


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def default_profile():
    return resolve_profile(layer_profile())


@pytest.fixture(autouse=True)
def rebalance_runtime_test_harness(monkeypatch: pytest.MonkeyPatch):
    """Pin service configuration and start every test with a fresh job service."""

    monkeypatch.setenv("REBALANCE_JOBS_ENABLED", "true")
    monkeypatch.setenv("REBALANCE_KNOWLEDGE_BASE_ENABLED", "true")
    monkeypatch.delenv("REBALANCE_JOBS_MAX_CONCURRENT", raising=False)
    monkeypatch.delenv("REBALANCE_JOB_TTL_SECONDS", raising=False)
    reset_rebalance_job_service_for_tests()
    yield
    reset_rebalance_job_service_for_tests()
