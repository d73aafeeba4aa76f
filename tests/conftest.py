"""Shared pytest fixtures and configuration."""

from __future__ import annotations

import pytest

from transfer_issues import Config, RepoRef


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")


@pytest.fixture
def config() -> Config:
    return Config(
        source_repo=RepoRef("my", "source_repo"),
        target_repo=RepoRef("my", "target_repo"),
        label_name="sample",
        label_color="b60205",
        project_id="PVT_123",
        status_filter="Ready",
    )
