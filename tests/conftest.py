# tests/conftest.py
import os

import pytest

pytest_plugins = ["tests.common.fixtures"]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    # Postgres tests need a server; keep them only when a DSN is configured
    # or when they are asked for explicitly with -m.
    markexpr = getattr(config.option, "markexpr", "") or ""
    if "postgres" in markexpr or os.getenv("UF_PG_DSN"):
        return

    deselected: list[pytest.Item] = []
    kept: list[pytest.Item] = []
    for item in items:
        if "postgres" in item.keywords:
            deselected.append(item)
        else:
            kept.append(item)

    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = kept
