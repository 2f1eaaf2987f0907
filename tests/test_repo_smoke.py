from __future__ import annotations

import sys
from pathlib import Path

import pytest

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    tomllib = None


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def test_package_is_importable_from_source_tree() -> None:
    src = _repo_root() / "packages" / "local-agents-python" / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    import local_agents

    assert Path(local_agents.__file__).resolve().is_relative_to(src.resolve())
    assert local_agents.__version__ == "1.0.0"


def test_default_config_ships_with_package() -> None:
    asset = _repo_root() / "packages" / "local-agents-python" / "src" / "local_agents" / "assets" / "default.yaml"
    assert asset.is_file()


def test_pyproject_declares_console_script_and_version() -> None:
    if tomllib is None:
        pytest.skip("tomllib requires Python 3.11+")
    data = tomllib.loads((_repo_root() / "pyproject.toml").read_text(encoding="utf-8"))

    assert data["project"]["scripts"]["local-agents"] == "local_agents.cli.main:main"

    import local_agents

    assert data["project"]["version"] == local_agents.__version__
