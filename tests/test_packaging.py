"""
Tests de empaquetado: api/, rag/ y rag/query/ no tienen __init__.py.
"""

from pathlib import Path

import pytest

setuptools = pytest.importorskip("setuptools")

project_root = Path(__file__).resolve().parent.parent


def test_namespace_discovery_enabled():
    pyproject = (project_root / "pyproject.toml").read_text(encoding="utf-8")
    assert "namespaces = true" in pyproject


def test_all_packages_discovered():
    found = setuptools.find_namespace_packages(
        where=str(project_root), include=["agent*", "api*", "rag*"]
    )
    assert {"agent", "api", "rag", "rag.query"} <= set(found)
