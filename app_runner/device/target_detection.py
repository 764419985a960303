"""
Target Auto-Detection
=====================

Resolves "connect without an explicit target" into a concrete default target
for platforms that keep a target manager (devkits registered by IP/name).

States, all under one wall-clock deadline:

    CHECK_DEFAULT    default configured?       yes -> done
                                               no  -> LIST_REGISTERED
    LIST_REGISTERED  registered targets        0   -> DETECT_NETWORK
                                               1   -> set default, CHECK_DEFAULT
                                               >1  -> ambiguity error
    DETECT_NETWORK   targets on the network    0   -> no-targets error
                                               1   -> register, LIST_REGISTERED
                                               >1  -> ambiguity error

There is never a tie-break between several candidates: an operator has to
pick one.
"""

import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Optional

from app_runner.errors import (
    NoTargetsFoundError,
    TargetAmbiguityError,
    TargetDetectionTimeoutError,
)
from app_runner.utils.logger import get_logger

if TYPE_CHECKING:
    from app_runner.device.provider import DeviceProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class Target:
    """
    A devkit known to (or found by) the platform's target manager.

    Attributes:
        identifier: Name or serial the target manager uses.
        address: Network address, if known.
    """

    identifier: str
    address: str = ""

    def __str__(self) -> str:
        if self.address and self.address != self.identifier:
            return f"{self.identifier} ({self.address})"
        return self.identifier


class DetectionState(Enum):
    """States of the detection sequence."""

    CHECK_DEFAULT = auto()
    LIST_REGISTERED = auto()
    DETECT_NETWORK = auto()
    DONE = auto()


class TargetDetector:
    """
    Drives the detection sequence through a provider's command table.

    The provider's transforms for ``get-default-target``, ``list-target`` and
    ``detect-target`` return ``Optional[Target]``, ``list[Target]`` and
    ``list[Target]``. ``set-default-target`` and ``register-target`` take the
    target identifier / address as their only parameter.

    Args:
        provider: Provider whose target manager is queried.
        deadline: Total seconds allowed for the whole sequence.
    """

    def __init__(self, provider: "DeviceProvider", deadline: float = 60.0) -> None:
        self.provider = provider
        self.deadline = deadline
        self.state = DetectionState.CHECK_DEFAULT
        self.default_target: Optional[Target] = None

    async def resolve(self) -> Target:
        """
        Run the sequence until a default target is configured.

        Returns:
            The default target.

        Raises:
            TargetAmbiguityError: Several candidates were found.
            NoTargetsFoundError: Nothing registered and nothing detectable.
            TargetDetectionTimeoutError: The deadline elapsed.
        """
        platform = self.provider.platform
        started = time.monotonic()
        self.state = DetectionState.CHECK_DEFAULT

        while self.state is not DetectionState.DONE:
            if time.monotonic() - started > self.deadline:
                raise TargetDetectionTimeoutError(platform, self.deadline)

            logger.debug("Target detection step", platform=platform, state=self.state.name)

            if self.state is DetectionState.CHECK_DEFAULT:
                await self._check_default()
            elif self.state is DetectionState.LIST_REGISTERED:
                await self._list_registered()
            elif self.state is DetectionState.DETECT_NETWORK:
                await self._detect_network()

        assert self.default_target is not None
        logger.info("Using default target", platform=platform, target=str(self.default_target))
        return self.default_target

    async def _check_default(self) -> None:
        default = await self.provider.invoke("get-default-target")
        if default:
            self.default_target = default
            self.state = DetectionState.DONE
        else:
            self.state = DetectionState.LIST_REGISTERED

    async def _list_registered(self) -> None:
        registered = _as_targets(await self.provider.invoke("list-target"))

        if not registered:
            logger.info("No registered targets, probing the network", platform=self.provider.platform)
            self.state = DetectionState.DETECT_NETWORK
        elif len(registered) == 1:
            target = registered[0]
            logger.info("Setting the only registered target as default", target=str(target))
            await self.provider.invoke("set-default-target", target.identifier)
            self.state = DetectionState.CHECK_DEFAULT
        else:
            raise TargetAmbiguityError(len(registered), "registered")

    async def _detect_network(self) -> None:
        detected = _as_targets(await self.provider.invoke("detect-target"))

        if not detected:
            raise NoTargetsFoundError(self.provider.platform)
        if len(detected) > 1:
            raise TargetAmbiguityError(len(detected), "detected")

        target = detected[0]
        logger.info("Registering the only detected target", target=str(target))
        await self.provider.invoke("register-target", target.address or target.identifier)
        self.state = DetectionState.LIST_REGISTERED


def _as_targets(value: Any) -> list[Target]:
    """Normalize a transform result (None, Target or list) into a list."""
    if value is None:
        return []
    if isinstance(value, Target):
        return [value]
    return list(value)
