"""
Tests for prompt handling, thread counts and defconfig names.
"""

import pytest

from conftest import ScriptedPrompter
from distro_setup.errors import MissingInputError
from distro_setup.prompts import Prompter, default_jobs, normalize_defconfig, parse_jobs


class TestJobs:
    @pytest.mark.parametrize("cores, expected", [(1, 1), (2, 1), (8, 6), (10, 8), (16, 12)])
    def test_default_jobs(self, cores, expected):
        assert default_jobs(cores) == expected

    def test_non_numeric_uses_default(self):
        assert parse_jobs("abc", default_jobs(8)) == 6

    def test_zero_uses_default(self):
        assert parse_jobs("0", default_jobs(8)) == 6

    def test_blank_uses_default(self):
        assert parse_jobs("", 6) == 6

    def test_larger_than_cores_is_honoured(self):
        assert parse_jobs("16", default_jobs(8)) == 16

    def test_negative_uses_default(self):
        assert parse_jobs("-4", 6) == 6

    @pytest.mark.parametrize("raw", ["²", "٣", "4.0", "1e3"])
    def test_non_ascii_or_decimal_digits_use_default(self, raw):
        assert parse_jobs(raw, 6) == 6

    def test_ask_jobs(self):
        prompter = ScriptedPrompter(answers=["16"])
        assert prompter.ask_jobs(8) == 16


class TestDefconfig:
    def test_suffix_added(self):
        assert normalize_defconfig("stone") == "stone_defconfig"

    def test_suffix_kept(self):
        assert normalize_defconfig("stone_defconfig") == "stone_defconfig"


class TestPrompter:
    def test_required_blank_raises(self):
        with pytest.raises(MissingInputError):
            ScriptedPrompter(answers=["   "]).ask_required("Kernel repository URL")

    def test_required_value_is_stripped(self):
        assert ScriptedPrompter(answers=["  https://x/y.git "]).ask_required("Repo") == "https://x/y.git"

    def test_default_on_blank(self):
        assert ScriptedPrompter(answers=[""]).ask_with_default("ZRAM multiplier", "3.3") == "3.3"

    def test_confirm_answer(self):
        assert ScriptedPrompter(confirms=[True]).confirm("Proceed?") is True

    def test_non_interactive_uses_defaults(self):
        prompter = Prompter(ask=lambda m: "ignored", confirm=lambda q, d: True, interactive=False)
        assert prompter.ask("anything") == ""
        assert prompter.confirm("Proceed?", default=False) is False
        with pytest.raises(MissingInputError):
            prompter.ask_required("Git user.name")
