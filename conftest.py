from __future__ import annotations

import os

import pytest

# Tests never touch the dev database file.
os.environ.setdefault("GRANTSYNC_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("GRANTSYNC_ASSOCIATION_RULES_FILE", "")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "concurrency: tests that exercise the registry from several threads",
    )
