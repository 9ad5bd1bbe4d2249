"""CLI integration tests for `tidywatch watch`."""

from __future__ import annotations

import json
import os
from pathlib import Path

from click.testing import CliRunner

from tidywatch.cli import cli


def _env_with_home(tmp_path: Path) -> dict[str, str]:
    """Return environment variables pointing HOME to a temp directory.

    Args:
        tmp_path: Temporary directory provided by pytest.

    Returns:
        dict[str, str]: Environment mapping with HOME set.
    """
    env = {key: value for key, value in os.environ.items() if not key.startswith("TIDYWATCH__")}
    env["HOME"] = str(tmp_path / "home")
    return env


def test_cli_watch_once_organizes_files(tmp_path: Path) -> None:
    """Ensure `tidywatch watch --once` files existing content and reports a summary.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """

    root = tmp_path / "data"
    root.mkdir()
    (root / "memo.txt").write_text("watch me", encoding="utf-8")
    (root / "track.flac").write_text("music", encoding="utf-8")

    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["watch", str(root), "--once"], env=env)

    assert result.exit_code == 0, result.output
    assert (root / "Documents" / "memo.txt").exists()
    assert (root / "Music" / "track.flac").exists()
    assert "Watch summary" in result.output
    assert "moved=2" in result.output
    assert (tmp_path / "home" / ".tidywatch" / "tidywatch.db").exists()


def test_cli_watch_once_json(tmp_path: Path) -> None:
    """`tidywatch watch --once --json` should emit one outcome per file.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """

    root = tmp_path / "json"
    root.mkdir()
    (root / "report.txt").write_text("content", encoding="utf-8")

    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["watch", str(root), "--once", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert len(payload["results"]) == 1
    batch = payload["results"][0]
    assert batch["root"].endswith("json")
    [outcome] = batch["outcomes"]
    assert outcome["state"] == "indexed"
    assert outcome["destination"].endswith(os.path.join("Documents", "report.txt"))


def test_cli_watch_requires_paths_when_none_saved(tmp_path: Path) -> None:
    """One-shot runs do not remember folders, so a bare `watch` has nothing to resume."""

    root = tmp_path / "oneshot"
    root.mkdir()
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    first = runner.invoke(cli, ["watch", str(root), "--once"], env=env)
    assert first.exit_code == 0, first.output
    missing = runner.invoke(cli, ["watch", "--once"], env=env)
    assert missing.exit_code != 0
    assert "Provide at least one PATH" in missing.output


def test_cli_watch_quiet_and_summary_conflict(tmp_path: Path) -> None:
    root = tmp_path / "conflict"
    root.mkdir()
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(
        cli, ["watch", str(root), "--once", "--quiet", "--summary"], env=env
    )

    assert result.exit_code != 0
    assert "cannot both be enabled" in result.output


def test_cli_watch_quiet_suppresses_output(tmp_path: Path) -> None:
    root = tmp_path / "quiet"
    root.mkdir()
    (root / "a.png").write_text("png", encoding="utf-8")
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["watch", str(root), "--once", "--quiet"], env=env)

    assert result.exit_code == 0
    assert result.output.strip() == ""
    assert (root / "Images" / "a.png").exists()


def test_cli_watch_rejects_invalid_debounce(tmp_path: Path) -> None:
    root = tmp_path / "debounce"
    root.mkdir()
    runner = CliRunner()

    result = runner.invoke(
        cli, ["watch", str(root), "--debounce", "0"], env=_env_with_home(tmp_path)
    )

    assert result.exit_code != 0
    assert "--debounce" in result.output
