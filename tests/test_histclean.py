import json
import os
from pathlib import Path

import pytest

import histclean
import histfilter
from histclean import EXIT_FAILED, EXIT_OK, EXIT_UNRECOVERABLE, main, run_daemon


@pytest.fixture
def histfile(tmp_path: Path) -> Path:
    path = tmp_path / "histfile"
    path.write_bytes(b"ls\ncd /\nls\nrm -rf /\n")
    return path


def test_main_filters_file_from_flag(histfile: Path, capsys):
    assert main(["--file", str(histfile)], env={}) == EXIT_OK

    assert histfile.read_bytes() == b"ls\ncd /\nrm -rf /\n"
    out = capsys.readouterr().out
    assert "removed 1 of 4 lines" in out


def test_main_uses_histfile_env(histfile: Path):
    assert main([], env={"HISTFILE": str(histfile)}) == EXIT_OK
    assert histfile.read_bytes() == b"ls\ncd /\nrm -rf /\n"


def test_main_reads_config_from_xdg(histfile: Path, tmp_path: Path):
    config_dir = tmp_path / "config" / "clean-history"
    config_dir.mkdir(parents=True)
    (config_dir / "config.json").write_text(
        json.dumps({"histfile": str(histfile), "blacklist": ["rm -rf /"], "min_char_limit": 3})
    )

    assert main([], env={"XDG_CONFIG_HOME": str(tmp_path / "config")}) == EXIT_OK
    assert histfile.read_bytes() == b"cd /\n"


def test_main_explicit_config_flag(histfile: Path, tmp_path: Path):
    config_path = tmp_path / "custom.json"
    config_path.write_text(json.dumps({"blacklist": ["cd /"]}))

    assert main(["-f", str(histfile), "-c", str(config_path)], env={}) == EXIT_OK
    assert histfile.read_bytes() == b"ls\nrm -rf /\n"


def test_main_missing_file_fails(tmp_path: Path, capsys):
    path = tmp_path / "missing"

    assert main(["--file", str(path)], env={}) == EXIT_FAILED

    assert not path.exists()
    assert "History file not found" in capsys.readouterr().err


def test_main_without_any_path_fails(capsys):
    assert main([], env={}) == EXIT_FAILED
    assert "HISTFILE" in capsys.readouterr().err


def test_main_dry_run_leaves_file(histfile: Path, capsys):
    assert main(["--file", str(histfile), "--dry-run"], env={}) == EXIT_OK

    assert histfile.read_bytes() == b"ls\ncd /\nls\nrm -rf /\n"
    err = capsys.readouterr().err
    assert "1 line(s) would be removed" in err
    assert "Duplicate of line 1" in err


def test_main_cleanup_failure_is_a_warning(histfile: Path, monkeypatch, capsys):
    def deny(path):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(histfilter.os, "remove", deny)

    assert main(["--file", str(histfile)], env={}) == EXIT_OK
    assert "Stale backup left at" in capsys.readouterr().err


def test_main_unrecoverable_exits(histfile: Path, monkeypatch, capsys):
    real_rename = os.rename
    calls = []

    def rename_once(src, dst):
        calls.append(src)
        if len(calls) > 1:
            raise OSError(5, "Input/output error")
        real_rename(src, dst)

    def fail_write(path, data):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(histfilter.os, "rename", rename_once)
    monkeypatch.setattr(histfilter, "_write_bytes", fail_write)

    with pytest.raises(SystemExit) as excinfo:
        main(["--file", str(histfile)], env={})

    assert excinfo.value.code == EXIT_UNRECOVERABLE
    backup = histfilter.backup_path_for(histfile)
    assert backup.read_bytes() == b"ls\ncd /\nls\nrm -rf /\n"
    assert str(backup) in capsys.readouterr().err


def test_main_review_keeps_rejected_removals_but_drops_duplicates(histfile: Path, tmp_path: Path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"blacklist": ["rm -rf /"]}))
    monkeypatch.setattr(histclean, "review_removals", lambda lines, removals: [])

    assert main(["--file", str(histfile), "-c", str(config_path), "--review"], env={}) == EXIT_OK
    assert histfile.read_bytes() == b"ls\ncd /\nrm -rf /\n"


def test_main_iterations_requires_daemon(histfile: Path, capsys):
    assert main(["--file", str(histfile), "--iterations", "2"], env={}) == EXIT_FAILED
    assert histfile.read_bytes() == b"ls\ncd /\nls\nrm -rf /\n"
    assert "--iterations only applies" in capsys.readouterr().err


def test_main_daemon_rejects_review(histfile: Path):
    assert main(["--file", str(histfile), "--daemon", "--review"], env={}) == EXIT_FAILED


def test_main_daemon_runs_iterations(histfile: Path, monkeypatch):
    sleeps = []
    monkeypatch.setattr(histclean.time, "sleep", sleeps.append)

    args = ["--file", str(histfile), "--daemon", "--interval", "5", "--iterations", "3"]
    assert main(args, env={}) == EXIT_OK

    assert sleeps == [5.0, 5.0]
    assert histfile.read_bytes() == b"ls\ncd /\nrm -rf /\n"


def test_run_daemon_keeps_going_after_failures():
    statuses = iter([EXIT_FAILED, EXIT_FAILED, EXIT_OK])
    sleeps = []

    assert run_daemon(lambda: next(statuses), 1.5, iterations=3, sleep=sleeps.append) == EXIT_OK
    assert sleeps == [1.5, 1.5]


def test_run_daemon_propagates_unrecoverable(tmp_path: Path):
    def tick():
        raise histfilter.UnrecoverableError(tmp_path / "h", tmp_path / "h.tmp")

    with pytest.raises(histfilter.UnrecoverableError):
        run_daemon(tick, 0, sleep=lambda s: None)
