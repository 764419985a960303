"""
Command Descriptors
===================

Maps logical provider actions ("connect", "launch", "screenshot", ...) to
concrete tool invocations.

A provider's command table is a ``dict[str, Optional[CommandDescriptor]]``:

* key present with a descriptor: the action runs that tool;
* key present with ``None``: the action is a deliberate no-op;
* key missing: the action is not configured for the platform (warning).

Arguments are built as an argv list, never interpolated into a shell string.
"""

import shutil
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from app_runner.errors import CommandTemplateError, ToolNotFoundError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# Called unconditionally by the session teardown, so a missing entry is silent.
SILENT_ACTIONS = frozenset({"disconnect"})

OutputTransform = Callable[[list[str]], Any]

_FORMATTER = string.Formatter()


@dataclass(frozen=True)
class CommandDescriptor:
    """
    How to run one action.

    Attributes:
        tool: Executable name or path relative to the SDK root.
        args: Ordered argument templates with positional placeholders
              (``"{0}"``, ``"{1}"``) filled from the build parameters.
        transform: Optional post-processor applied to the output lines.
    """

    tool: str
    args: tuple[str, ...] = ()
    transform: Optional[OutputTransform] = None


@dataclass
class BuiltCommand:
    """
    A resolved, ready-to-execute command.

    Attributes:
        action: Logical action name.
        argv: Full argument vector, tool path first. Empty for no-ops.
        transform: Output post-processor, if any.
        is_noop: True when nothing should be executed.
    """

    action: str
    argv: list[str] = field(default_factory=list)
    transform: Optional[OutputTransform] = None
    is_noop: bool = False

    @classmethod
    def noop(cls, action: str) -> "BuiltCommand":
        return cls(action=action, is_noop=True)

    def __str__(self) -> str:
        return " ".join(self.argv) if self.argv else f"<no-op {self.action}>"


def _positional_arity(templates: tuple[str, ...]) -> int:
    """Number of positional parameters referenced by the templates."""
    highest = -1
    for template in templates:
        for _, field_name, _, _ in _FORMATTER.parse(template):
            if not field_name:
                continue
            head = field_name.split(".", 1)[0].split("[", 1)[0]
            if head.isdigit():
                highest = max(highest, int(head))
    return highest + 1


def cmd(tool: str, *args: str, transform: Optional[OutputTransform] = None) -> CommandDescriptor:
    """Shorthand for writing command tables."""
    return CommandDescriptor(tool=tool, args=tuple(args), transform=transform)


class CommandBuilder:
    """
    Turns action names into :class:`BuiltCommand` values for one provider.

    Args:
        platform: Platform name, used in log messages.
        commands: The provider's command table.
        sdk_root: When set, tools are resolved relative to this directory;
                  otherwise they are looked up on PATH.
    """

    def __init__(
        self,
        platform: str,
        commands: dict[str, Optional[CommandDescriptor]],
        sdk_root: Optional[Union[str, Path]] = None,
    ) -> None:
        self.platform = platform
        self.commands = commands
        self.sdk_root = Path(sdk_root) if sdk_root else None

    def has_action(self, action: str) -> bool:
        """Whether the table configures ``action`` with a real command."""
        return self.commands.get(action) is not None

    def resolve_tool(self, tool: str) -> str:
        """
        Locate a tool executable.

        Raises:
            ToolNotFoundError: If the tool does not exist.
        """
        if self.sdk_root is not None:
            candidate = self.sdk_root / tool
            if candidate.is_file():
                return str(candidate)
            # Windows SDKs ship .exe tools referenced without extension
            with_exe = candidate.with_name(candidate.name + ".exe")
            if with_exe.is_file():
                return str(with_exe)
            raise ToolNotFoundError(tool, searched=str(self.sdk_root))

        if Path(tool).is_absolute():
            if Path(tool).is_file():
                return tool
            raise ToolNotFoundError(tool, searched=str(Path(tool).parent))

        found = shutil.which(tool)
        if not found:
            raise ToolNotFoundError(tool)
        return found

    def build(
        self,
        action: str,
        *params: Any,
        extra_args: Sequence[str] = (),
    ) -> BuiltCommand:
        """
        Build the command for ``action``.

        Args:
            action: Logical action name.
            *params: Values substituted positionally into the argument templates.
            extra_args: Arguments appended verbatim after the templates
                        (e.g. the arguments of a launched application).

        Returns:
            BuiltCommand, flagged ``is_noop`` when nothing should run.

        Raises:
            ToolNotFoundError: The action's tool cannot be located.
            CommandTemplateError: ``params`` do not fit the templates.
        """
        if action not in self.commands:
            if action not in SILENT_ACTIONS:
                logger.warning(
                    "Action not configured for platform, skipping",
                    platform=self.platform,
                    action=action,
                )
            return BuiltCommand.noop(action)

        descriptor = self.commands[action]
        if descriptor is None:
            logger.debug("Action is a no-op for platform", platform=self.platform, action=action)
            return BuiltCommand.noop(action)

        tool_path = self.resolve_tool(descriptor.tool)

        try:
            expected = _positional_arity(descriptor.args)
            args = [template.format(*params) for template in descriptor.args]
        except (IndexError, KeyError, ValueError, AttributeError) as e:
            raise CommandTemplateError(action, descriptor.args, str(e)) from e

        if len(params) > expected:
            raise CommandTemplateError(
                action,
                descriptor.args,
                f"expected {expected} parameter(s), got {len(params)}",
            )

        return BuiltCommand(
            action=action,
            argv=[tool_path, *args, *(str(a) for a in extra_args)],
            transform=descriptor.transform,
        )
