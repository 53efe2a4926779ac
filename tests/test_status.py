import asyncio

import pytest

from face_presence.exceptions import InvalidTransition, ModelLoadError, NetworkError, VerificationRejected
from face_presence.status import (
    MSG_COMPLETED,
    MSG_CONNECTION_ERROR,
    MSG_NOT_MATCHED,
    MSG_RETRY,
    StatusStateMachine,
)
from face_presence.types import Status, SubmissionOutcome

DWELL = 0.05


class Recorder:
    def __init__(self):
        self.completed = 0
        self.recovered = 0

    def on_completed(self):
        self.completed += 1

    def on_recovered(self):
        self.recovered += 1


def _machine(recorder: Recorder, dwell: float = DWELL) -> StatusStateMachine:
    return StatusStateMachine(
        dwell_seconds=dwell,
        on_completed=recorder.on_completed,
        on_recovered=recorder.on_recovered,
    )


def _rejected() -> VerificationRejected:
    return VerificationRejected(SubmissionOutcome(recognized=False, confidence=0.85))


def test_default_dwell_is_three_seconds():
    assert StatusStateMachine().dwell_seconds == 3.0


@pytest.mark.asyncio
async def test_success_completes_once_after_dwell():
    recorder = Recorder()
    machine = _machine(recorder)
    loop = asyncio.get_running_loop()

    machine.begin_processing()
    assert machine.snapshot().display_state == "processing"
    machine.succeed()
    entered = loop.time()
    assert machine.status is Status.SUCCESS

    while machine.status is not Status.COMPLETED:
        await asyncio.sleep(0.005)
    elapsed = loop.time() - entered
    await asyncio.sleep(DWELL * 3)

    assert elapsed >= DWELL * 0.95
    assert recorder.completed == 1
    assert recorder.recovered == 0
    assert machine.message == MSG_COMPLETED


@pytest.mark.asyncio
async def test_failure_recovers_to_scanning_once_after_dwell():
    recorder = Recorder()
    machine = _machine(recorder)
    loop = asyncio.get_running_loop()

    machine.begin_processing()
    machine.fail(_rejected())
    entered = loop.time()
    assert machine.message == MSG_NOT_MATCHED

    await asyncio.sleep(DWELL / 2)
    assert machine.status is Status.FAILURE

    while machine.status is not Status.SCANNING:
        await asyncio.sleep(0.005)
    elapsed = loop.time() - entered
    await asyncio.sleep(DWELL * 3)

    assert elapsed >= DWELL * 0.95
    assert recorder.recovered == 1
    assert not machine.processing
    assert machine.message == MSG_RETRY


@pytest.mark.asyncio
async def test_network_failure_message():
    machine = _machine(Recorder())
    machine.begin_processing()

    machine.fail(NetworkError("timeout"))

    assert machine.status is Status.FAILURE
    assert machine.message == MSG_CONNECTION_ERROR
    assert machine.snapshot().error == "NetworkError"
    machine.close()


@pytest.mark.asyncio
async def test_illegal_transitions_are_rejected():
    machine = _machine(Recorder())

    with pytest.raises(InvalidTransition):
        machine.succeed()

    machine.begin_processing()
    with pytest.raises(InvalidTransition):
        machine.begin_processing()

    machine.succeed()
    with pytest.raises(InvalidTransition):
        machine.fail(_rejected())
    machine.close()


@pytest.mark.asyncio
async def test_close_cancels_pending_dwell():
    recorder = Recorder()
    machine = _machine(recorder)
    machine.begin_processing()
    machine.fail(_rejected())

    machine.close()
    await asyncio.sleep(DWELL * 3)

    assert recorder.recovered == 0
    assert machine.status is Status.FAILURE
    assert not machine.dwell_pending


@pytest.mark.asyncio
async def test_halt_is_fatal():
    recorder = Recorder()
    machine = _machine(recorder)

    machine.halt(ModelLoadError("weights missing"), "Error loading AI models. Please refresh.")
    machine.set_message("Position your face in the frame")

    snapshot = machine.snapshot()
    assert snapshot.fatal
    assert snapshot.error == "ModelLoadError"
    assert snapshot.message == "Error loading AI models. Please refresh."
    with pytest.raises(InvalidTransition):
        machine.begin_processing()


@pytest.mark.asyncio
async def test_listeners_receive_each_change():
    machine = _machine(Recorder())
    seen = []
    unsubscribe = machine.subscribe(lambda snap: seen.append(snap.display_state))

    machine.set_message("Position your face in the frame")
    machine.begin_processing()
    machine.succeed()
    unsubscribe()
    machine.close()

    assert seen == ["searching", "processing", "success"]
