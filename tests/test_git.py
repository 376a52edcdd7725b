"""
Tests for reading and writing the Git identity.
"""

import subprocess

import pytest

from distro_setup.git import GERRIT_KEY, UserIdentity, git_config_get, git_config_set, read_identity


class TestGitConfig:
    def test_get_value(self, runner):
        runner.on("--get", "user.name", stdout="Alice\n")
        assert git_config_get("user.name", runner) == "Alice"

    def test_unset_key_is_empty(self, runner):
        runner.on("--get", "user.email", returncode=1)
        assert git_config_get("user.email", runner) == ""

    def test_other_errors_raise(self, runner):
        runner.on("--get", "user.email", returncode=128)
        with pytest.raises(subprocess.CalledProcessError):
            git_config_get("user.email", runner)

    def test_set(self, runner):
        git_config_set("user.name", "Alice", runner)
        assert runner.calls == [["git", "config", "--global", "user.name", "Alice"]]


class TestIdentity:
    def test_read_identity(self, runner):
        runner.on("--get", "user.name", stdout="Alice\n")
        runner.on("--get", "user.email", stdout="alice@example.com\n")
        runner.on("--get", GERRIT_KEY, returncode=1)
        identity = read_identity(runner)
        assert identity == UserIdentity("Alice", "alice@example.com", None)
        assert identity.complete

    def test_incomplete(self):
        assert not UserIdentity("Alice", "").complete

    def test_str(self):
        assert str(UserIdentity("Alice", "a@b.c", "alice")) == "Alice <a@b.c>, Gerrit: alice"
