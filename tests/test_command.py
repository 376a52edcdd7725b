"""
Tests for the command runner and download helper.
"""

import subprocess

import pytest

from distro_setup.command import download_file, run_command


class TestRunCommand:
    def test_undecodable_output_is_replaced(self):
        result = run_command(["sh", "-c", r"printf 'caf\351 ok'"], capture_output=True)
        assert result.stdout.startswith("caf") and result.stdout.endswith(" ok")

    def test_undecodable_stderr_on_failure(self):
        with pytest.raises(subprocess.CalledProcessError) as excinfo:
            run_command(["sh", "-c", r"printf '\377' >&2; exit 3"], capture_output=True)
        assert excinfo.value.returncode == 3
        assert len(excinfo.value.stderr) == 1

    def test_unchecked_failure_returns_result(self):
        assert run_command(["sh", "-c", "exit 2"], check=False).returncode == 2

    def test_timeout_becomes_timeout_error(self):
        with pytest.raises(TimeoutError, match="timed out"):
            run_command(["sleep", "5"], timeout=0.1)


class TestDownloadFile:
    def test_uses_wget_when_available(self, runner, tmp_path, monkeypatch):
        dest = tmp_path / "clang.tar.gz"
        monkeypatch.setattr("distro_setup.command.command_exists", lambda c: c == "wget")

        def fetch(cmd):
            dest.write_bytes(b"data")
            return 0, ""

        runner.on("wget", handler=fetch)
        assert download_file("https://example.com/clang.tar.gz", dest, run=runner) == dest
        assert runner.calls[0][:2] == ["wget", "-q"]

    def test_failed_download_leaves_no_file(self, runner, tmp_path, monkeypatch):
        dest = tmp_path / "clang.tar.gz"
        monkeypatch.setattr("distro_setup.command.command_exists", lambda c: c == "curl")

        def partial(cmd):
            dest.write_bytes(b"part")
            return 22, ""

        runner.on("curl", handler=partial)
        with pytest.raises(subprocess.CalledProcessError):
            download_file("https://example.com/missing.tar.gz", dest, run=runner)
        assert not dest.exists()
