"""
Tests for Target Auto-Detection
===============================

Drives the detection sequence against an in-memory target manager.
"""

import asyncio

import pytest

from app_runner.device.target_detection import Target, TargetDetector
from app_runner.errors import (
    NoTargetsFoundError,
    TargetAmbiguityError,
    TargetDetectionTimeoutError,
)


class FakeTargetManager:
    """Provider stand-in with a target manager held in memory."""

    platform = "Switch"

    def __init__(self, registered=(), detected=(), default=None, persist_default=True, delay=0.0):
        self.registered = list(registered)
        self.detected = list(detected)
        self.default = default
        self.persist_default = persist_default
        self.delay = delay
        self.calls = []

    async def invoke(self, action, *params, **kwargs):
        self.calls.append((action, *params))
        if self.delay:
            await asyncio.sleep(self.delay)

        if action == "get-default-target":
            return self.default
        if action == "list-target":
            return list(self.registered)
        if action == "detect-target":
            return list(self.detected)
        if action == "set-default-target":
            if self.persist_default:
                self.default = next(t for t in self.registered if t.identifier == params[0])
            return []
        if action == "register-target":
            target = next(t for t in self.detected if params[0] in (t.address, t.identifier))
            self.registered.append(target)
            return []
        raise AssertionError(f"unexpected action {action}")

    def actions(self):
        return [call[0] for call in self.calls]


DEVKIT_A = Target("devkit-a", "10.0.0.10")
DEVKIT_B = Target("devkit-b", "10.0.0.11")


@pytest.mark.asyncio
async def test_default_already_configured():
    manager = FakeTargetManager(default=DEVKIT_A)
    target = await TargetDetector(manager).resolve()
    assert target == DEVKIT_A
    assert manager.actions() == ["get-default-target"]


@pytest.mark.asyncio
async def test_single_registered_target_becomes_default():
    manager = FakeTargetManager(registered=[DEVKIT_A])
    target = await TargetDetector(manager).resolve()

    assert target == DEVKIT_A
    assert manager.default == DEVKIT_A
    assert manager.actions() == [
        "get-default-target",
        "list-target",
        "set-default-target",
        "get-default-target",
    ]
    assert ("set-default-target", "devkit-a") in manager.calls


@pytest.mark.asyncio
async def test_several_registered_targets_are_ambiguous():
    manager = FakeTargetManager(registered=[DEVKIT_A, DEVKIT_B])
    with pytest.raises(TargetAmbiguityError) as exc:
        await TargetDetector(manager).resolve()

    assert exc.value.count == 2
    assert "2" in str(exc.value)
    assert manager.default is None
    assert "set-default-target" not in manager.actions()


@pytest.mark.asyncio
async def test_nothing_registered_or_detected():
    manager = FakeTargetManager()
    with pytest.raises(NoTargetsFoundError) as exc:
        await TargetDetector(manager).resolve()
    assert "manually" in str(exc.value)
    assert manager.actions() == ["get-default-target", "list-target", "detect-target"]


@pytest.mark.asyncio
async def test_single_detected_target_is_registered_then_defaulted():
    manager = FakeTargetManager(detected=[DEVKIT_A])
    target = await TargetDetector(manager).resolve()

    assert target == DEVKIT_A
    assert manager.registered == [DEVKIT_A]
    assert manager.default == DEVKIT_A
    assert manager.actions() == [
        "get-default-target",
        "list-target",
        "detect-target",
        "register-target",
        "list-target",
        "set-default-target",
        "get-default-target",
    ]
    assert ("register-target", "10.0.0.10") in manager.calls


@pytest.mark.asyncio
async def test_several_detected_targets_are_ambiguous():
    manager = FakeTargetManager(detected=[DEVKIT_A, DEVKIT_B])
    with pytest.raises(TargetAmbiguityError) as exc:
        await TargetDetector(manager).resolve()
    assert exc.value.count == 2
    assert manager.registered == []


@pytest.mark.asyncio
async def test_deadline_exceeded_while_cycling():
    # The default never sticks, so the sequence keeps cycling
    manager = FakeTargetManager(registered=[DEVKIT_A], persist_default=False, delay=0.01)
    with pytest.raises(TargetDetectionTimeoutError) as exc:
        await TargetDetector(manager, deadline=0.1).resolve()
    assert exc.value.deadline == 0.1
    assert not isinstance(exc.value, TargetAmbiguityError)


def test_target_str():
    assert str(DEVKIT_A) == "devkit-a (10.0.0.10)"
    assert str(Target("devkit-c")) == "devkit-c"
