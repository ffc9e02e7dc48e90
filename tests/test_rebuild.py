from __future__ import annotations

import subprocess
from pathlib import Path

from utterflow.rebuild import build_rebuild_script, is_self_project, spawn_self_rebuild


def _checkout(root: Path, name: str = "utterflow") -> Path:
    (root / "src" / "utterflow").mkdir(parents=True)
    (root / "src" / "utterflow" / "__init__.py").write_text("", encoding="utf-8")
    (root / "pyproject.toml").write_text(f'[project]\nname = "{name}"\n', encoding="utf-8")
    return root


def test_is_self_project(tmp_path: Path) -> None:
    assert is_self_project(_checkout(tmp_path / "mine"))
    assert not is_self_project(_checkout(tmp_path / "other", name="something-else"))
    assert not is_self_project(tmp_path / "empty")


def test_rebuild_script_reinstalls_then_relaunches(tmp_path: Path) -> None:
    script = build_rebuild_script(
        tmp_path / "my project",
        pid=4242,
        relaunch=["/usr/bin/utterflow", "--serve"],
        rebuild_command="make install",
    )

    lines = script.splitlines()
    assert lines[1] == f"cd '{tmp_path / 'my project'}'"
    assert lines[2] == "make install"
    assert "kill 4242" in lines[3]
    assert lines[-1] == "nohup /usr/bin/utterflow --serve >/dev/null 2>&1 &"


def test_spawn_self_rebuild_detaches(tmp_path: Path) -> None:
    calls = []

    def fake_popen(args, **kwargs):
        calls.append((args, kwargs))
        return "handle"

    handle = spawn_self_rebuild(tmp_path, pid=99, relaunch=["utterflow"], popen=fake_popen)

    assert handle == "handle"
    args, kwargs = calls[0]
    assert args[:2] == ["/bin/sh", "-c"]
    assert "-m pip install -e ." in args[2]
    assert kwargs["start_new_session"] is True
    assert kwargs["stdout"] is subprocess.DEVNULL
