"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentgalaxy.config import reset_config
from agentgalaxy.logging import reset_logging
from tests.utils import write_tree

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch):
    """Keep user config and AG_* variables out of every test."""
    home = tmp_path_factory.mktemp("xdg")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    for name in ("AG_LOG", "AG_RELAY_URL", "AG_RELAY_PORT"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
    reset_logging()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A small project tree."""
    root = tmp_path / "proj"
    write_tree(
        root,
        {
            "src": {
                "main.x": "fn main() {}\n",
                "lib.rs": "pub fn lib() {}\n",
                "util": {"helpers.py": "def helper():\n    pass\n"},
            },
            "docs": {"index.md": "# Docs\n"},
            "README.md": "readme\n",
            "Cargo.toml": "[package]\n",
        },
    )
    return root
