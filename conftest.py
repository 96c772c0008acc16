from __future__ import annotations

import os

import pytest

# Keep the module-level engine off the dev database file during tests.
os.environ.setdefault("TESSERA_DATABASE_URL", "sqlite:///:memory:")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "property: hypothesis-driven tests comparing row evaluation with SQL scoping",
    )
