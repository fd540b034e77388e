"""Unit tests for declared package metadata."""

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


@pytest.mark.unit
class TestDependencyPins:
    """Tests for pyproject.toml dependency constraints."""

    def test_should_keep_mcp_below_next_major(self) -> None:
        """Verify the mcp SDK is capped below 2.x, where McpError was renamed."""
        dependencies = tomllib.loads(PYPROJECT.read_text())["project"]["dependencies"]

        [mcp_requirement] = [d for d in dependencies if d.split(">")[0].split("<")[0] == "mcp"]

        assert "<2" in mcp_requirement
