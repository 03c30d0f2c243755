"""Pytest configuration and test categorization.

Tests live in a flat `tests/` directory and are categorized into `unit`,
`regression`, and `e2e` via markers so CI can run targeted subsets.
"""

from __future__ import annotations

import pathlib
import sys

import matplotlib
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

matplotlib.use("Agg")


def pytest_configure(config: pytest.Config) -> None:
    for name, text in (
        ("unit", "fast tests of a single component"),
        ("regression", "guards against a previously fixed behaviour"),
        ("e2e", "drives the whole pipeline or the CLI"),
    ):
        config.addinivalue_line("markers", f"{name}: {text}")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Auto-apply test category markers based on filename conventions."""
    for item in items:
        path = pathlib.Path(str(item.fspath))
        name = path.name.lower()

        if "e2e" in name or "end_to_end" in name:
            item.add_marker(pytest.mark.e2e)
            continue

        if "regression" in name:
            item.add_marker(pytest.mark.regression)
            continue

        item.add_marker(pytest.mark.unit)
