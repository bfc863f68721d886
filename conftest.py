"""Configuration for pytest."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _add_standard_imports(doctest_namespace):
    """Add pygeowmts namespace for doctest."""
    import pygeowmts as wmts

    doctest_namespace["wmts"] = wmts
