import tomllib
from pathlib import Path


def _pyproject():
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    return tomllib.loads(pyproject_path.read_text(encoding="utf-8"))


def test_pyproject_declares_pytest_as_test_extra():
    payload = _pyproject()

    dependencies = payload["tool"]["poetry"]["dependencies"]
    pytest_dep = dependencies["pytest"]

    assert isinstance(pytest_dep, dict)
    assert pytest_dep["optional"] is True

    extras = payload["tool"]["poetry"]["extras"]
    assert "pytest" in extras["test"]


def test_pyproject_declares_every_entry_point():
    scripts = _pyproject()["tool"]["poetry"]["scripts"]

    assert scripts["obsctl"] == "obsctl.cli.main:app"
    assert set(scripts) == {"obsctl", "obs-install", "obs-uninstall", "obs-health-check", "obs-preflight"}
