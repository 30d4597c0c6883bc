from __future__ import annotations

import random

import pytest

from callpipe.errors import InvariantError
from callpipe.gate import Admission, InFlightGate
from callpipe.parser import Command, CommandKind


def _command(verb: str) -> Command:
    return Command(kind=CommandKind.CALL, api="api", verb=verb, raw=f"api {verb}")


class _Recorder:
    def __init__(self) -> None:
        self.dispatched: list[str] = []
        self.events: list[str] = []

    def dispatch(self, command: Command) -> None:
        self.dispatched.append(command.verb)

    def pause(self) -> None:
        self.events.append("pause")

    def resume(self) -> None:
        self.events.append("resume")


def _gate(ceiling: int, recorder: _Recorder) -> InFlightGate:
    return InFlightGate(ceiling, dispatch=recorder.dispatch, on_pause=recorder.pause, on_resume=recorder.resume)


def test_unlimited_gate_always_admits() -> None:
    recorder = _Recorder()
    gate = _gate(0, recorder)
    for index in range(100):
        assert gate.admit(_command(str(index))) == Admission.PROCEED
    assert gate.count == 100
    assert recorder.events == []


def test_ceiling_two_queues_the_third_command() -> None:
    recorder = _Recorder()
    gate = _gate(2, recorder)
    assert gate.admit(_command("a")) == Admission.PROCEED
    assert gate.admit(_command("b")) == Admission.PROCEED
    assert gate.admit(_command("c")) == Admission.QUEUED
    assert gate.count == 2
    assert gate.pending == 1
    assert recorder.events == ["pause"]

    gate.release()
    assert recorder.dispatched == ["c"]
    assert gate.count == 2
    assert gate.pending == 0
    assert gate.paused is True


def test_queued_commands_leave_in_fifo_order() -> None:
    recorder = _Recorder()
    gate = _gate(1, recorder)
    gate.admit(_command("first"))
    gate.admit(_command("L1"))
    gate.admit(_command("L2"))
    gate.release()
    gate.release()
    assert recorder.dispatched == ["L1", "L2"]


def test_fresh_command_waits_behind_queued_ones() -> None:
    recorder = _Recorder()
    gate = _gate(1, recorder)
    gate.admit(_command("a"))
    gate.admit(_command("b"))
    gate.count = 0  # capacity appears without a release
    assert gate.admit(_command("c")) == Admission.QUEUED


def test_resume_once_drained_with_headroom() -> None:
    recorder = _Recorder()
    gate = _gate(1, recorder)
    gate.admit(_command("a"))
    gate.release()
    assert recorder.events == ["pause", "resume"]
    assert gate.idle


def test_synchronous_completion_during_release_is_accounted() -> None:
    recorder = _Recorder()
    gate = InFlightGate(1, on_pause=recorder.pause, on_resume=recorder.resume)

    def dispatch(command: Command) -> None:
        recorder.dispatched.append(command.verb)
        gate.release()

    gate.bind(dispatch)
    gate.admit(_command("a"))
    gate.admit(_command("b"))
    gate.admit(_command("c"))
    gate.release()
    assert recorder.dispatched == ["b", "c"]
    assert gate.idle
    assert recorder.events[-1] == "resume"


def test_release_without_call_is_an_invariant_violation() -> None:
    gate = InFlightGate(1)
    with pytest.raises(InvariantError):
        gate.release()


def test_count_never_exceeds_ceiling_under_random_interleaving() -> None:
    rng = random.Random(1234)
    ceiling = 3
    in_flight: list[str] = []
    gate = InFlightGate(ceiling, dispatch=lambda command: in_flight.append(command.verb))

    submitted = 0
    for index in range(500):
        if rng.random() < 0.6:
            command = _command(str(index))
            submitted += 1
            if gate.admit(command) == Admission.PROCEED:
                in_flight.append(command.verb)
        elif in_flight:
            in_flight.pop(rng.randrange(len(in_flight)))
            gate.release()
        assert gate.count <= ceiling
        assert gate.count == len(in_flight)

    while in_flight:
        in_flight.pop()
        gate.release()
    assert gate.count == 0
    assert gate.idle
    assert gate.peak == ceiling
