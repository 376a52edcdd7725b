"""
Tests for the step sequencer and the run report.
"""

import pytest

from distro_setup.errors import FatalStepError, StepSkipped
from distro_setup.sequencer import Criticality, ProvisioningStep, Sequencer, StepStatus


def ok():
    return "done"


def skipped():
    raise StepSkipped("already there")


def broken():
    raise RuntimeError("boom")


def make_step(name, action, criticality=Criticality.RECOVERABLE):
    return ProvisioningStep(name=name, action=action, criticality=criticality)


class TestSequencer:
    def test_records_every_outcome(self):
        seq = Sequencer(show_progress=False)
        report = seq.run([make_step("a", ok), make_step("b", skipped), make_step("c", broken)])
        assert [r.status for r in report.results] == [StepStatus.SUCCESS, StepStatus.SKIPPED, StepStatus.FAILED]
        assert report.get("a").message == "done"
        assert report.get("b").message == "already there"
        assert report.get("c").message == "boom"
        assert not report.ok

    def test_recoverable_failure_continues(self):
        calls = []
        seq = Sequencer(show_progress=False)
        seq.run([make_step("bad", broken), make_step("after", lambda: calls.append("after"))])
        assert calls == ["after"]

    def test_fatal_failure_aborts(self):
        calls = []
        seq = Sequencer(show_progress=False)
        with pytest.raises(FatalStepError) as excinfo:
            seq.run(
                [
                    make_step("first", ok),
                    make_step("check_root", broken, Criticality.FATAL),
                    make_step("never", lambda: calls.append("never")),
                ]
            )
        assert excinfo.value.step == "check_root"
        assert isinstance(excinfo.value.cause, RuntimeError)
        assert calls == []
        assert seq.report.get("check_root").status is StepStatus.FATAL
        assert seq.report.get("never") is None

    def test_fatal_step_may_skip(self):
        seq = Sequencer(show_progress=False)
        report = seq.run([make_step("git", skipped, Criticality.FATAL)])
        assert report.get("git").status is StepStatus.SKIPPED
        assert report.ok

    def test_steps_run_once_in_order(self):
        order = []
        steps = [make_step(str(i), lambda i=i: order.append(i)) for i in range(5)]
        Sequencer(show_progress=False).run(steps)
        assert order == [0, 1, 2, 3, 4]

    def test_with_status(self):
        seq = Sequencer(show_progress=False)
        report = seq.run([make_step("a", ok), make_step("b", ok), make_step("c", skipped)])
        assert [r.name for r in report.with_status(StepStatus.SUCCESS)] == ["a", "b"]

    def test_title_defaults_to_name(self):
        assert make_step("remove_firefox", ok).title == "Remove firefox"
