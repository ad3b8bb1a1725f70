from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def test_console_audio_stack_is_a_core_dependency():
    project = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))["project"]
    core = [req.split(">")[0].split("=")[0].strip().lower() for req in project["dependencies"]]
    assert {"pyaudio", "numpy", "python-dotenv"} <= set(core)
    assert "audio" not in project.get("optional-dependencies", {})
    assert project["scripts"]["wake-force"] == "wake_force:main"
