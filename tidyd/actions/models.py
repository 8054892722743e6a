"""
Rule Model
==========

Rules, their conditions and the closed set of action variants.
Rules are loaded from configuration and never mutated in place; toggling a
rule or reloading configuration replaces whole objects.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from tidyd.utils.exceptions import ConfigurationError


class ActionType(Enum):
    """Kinds of actions a rule can fire."""
    MOVE = "move"
    COPY = "copy"
    RENAME = "rename"
    TRASH = "trash"
    DELETE = "delete"
    RUN = "run"
    ARCHIVE = "archive"
    NOTHING = "nothing"


def _require_str(data: Dict[str, Any], key: str, context: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"{context}: '{key}' must be a non-empty string",
            config_key=key,
            expected_type="str",
        )
    return value


def _optional_str(data: Dict[str, Any], key: str, context: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConfigurationError(
            f"{context}: '{key}' must be a string",
            config_key=key,
            expected_type="str",
        )
    return value


def _optional_count(data: Dict[str, Any], key: str, context: str) -> Optional[int]:
    value = data.get(key)
    if value is None or value == "":
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(
            f"{context}: '{key}' must be a non-negative integer",
            config_key=key,
            expected_type="int",
        )
    return value


def _optional_bool(data: Dict[str, Any], key: str, context: str) -> Optional[bool]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigurationError(
            f"{context}: '{key}' must be true, false or omitted",
            config_key=key,
            expected_type="bool",
        )
    return value


@dataclass(frozen=True)
class Condition:
    """Conjunctive set of optional predicates.

    Every populated field must hold for a file to match; a field left as
    ``None`` always passes, so an empty Condition matches everything.

    Attributes:
        extension: Extension without leading dot, compared case-insensitively.
        name_glob: Shell-style wildcard against the base name.
        name_regex: Regular expression searched in the base name.
        size_greater: Size must be strictly greater (bytes).
        size_less: Size must be strictly less (bytes).
        age_greater: Whole days since modification must be strictly greater.
        age_less: Whole days since modification must be strictly less.
        is_directory: True for directories only, False for non-directories.
        is_hidden: True for hidden entries only, False for visible ones.
    """
    extension: Optional[str] = None
    name_glob: Optional[str] = None
    name_regex: Optional[str] = None
    size_greater: Optional[int] = None
    size_less: Optional[int] = None
    age_greater: Optional[int] = None
    age_less: Optional[int] = None
    is_directory: Optional[bool] = None
    is_hidden: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], context: str = "conditions") -> "Condition":
        """Create Condition from dictionary."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"{context} must be a mapping", expected_type="mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"{context}: unknown condition(s) {', '.join(sorted(unknown))}"
            )

        extension = _optional_str(data, "extension", context)
        return cls(
            extension=extension.lstrip(".") if extension else None,
            name_glob=_optional_str(data, "name_glob", context),
            name_regex=_optional_str(data, "name_regex", context),
            size_greater=_optional_count(data, "size_greater", context),
            size_less=_optional_count(data, "size_less", context),
            age_greater=_optional_count(data, "age_greater", context),
            age_less=_optional_count(data, "age_less", context),
            is_directory=_optional_bool(data, "is_directory", context),
            is_hidden=_optional_bool(data, "is_hidden", context),
        )


@dataclass(frozen=True)
class MoveAction:
    """Move the entry into a destination directory."""
    type: ClassVar[ActionType] = ActionType.MOVE
    destination: str
    create_dirs: bool = True


@dataclass(frozen=True)
class CopyAction:
    """Copy the entry into a destination directory."""
    type: ClassVar[ActionType] = ActionType.COPY
    destination: str
    create_dirs: bool = True


@dataclass(frozen=True)
class RenameAction:
    """Rename the entry in place using a token pattern."""
    type: ClassVar[ActionType] = ActionType.RENAME
    pattern: str


@dataclass(frozen=True)
class TrashAction:
    """Send the entry to the OS trash."""
    type: ClassVar[ActionType] = ActionType.TRASH


@dataclass(frozen=True)
class DeleteAction:
    """Permanently remove the entry."""
    type: ClassVar[ActionType] = ActionType.DELETE


@dataclass(frozen=True)
class RunAction:
    """Run an external command.

    When ``args`` is empty the command string is split shell-style and
    every resulting word goes through token substitution.
    """
    type: ClassVar[ActionType] = ActionType.RUN
    command: str
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ArchiveAction:
    """Compress the entry into ``<destination>/<name>.zip``."""
    type: ClassVar[ActionType] = ActionType.ARCHIVE
    destination: str


@dataclass(frozen=True)
class NothingAction:
    """Match and log only."""
    type: ClassVar[ActionType] = ActionType.NOTHING


Action = Union[
    MoveAction,
    CopyAction,
    RenameAction,
    TrashAction,
    DeleteAction,
    RunAction,
    ArchiveAction,
    NothingAction,
]


def action_from_dict(data: Optional[Dict[str, Any]], context: str = "action") -> Action:
    """Create an action variant from its configuration mapping.

    Args:
        data: Mapping with a ``type`` key and the variant's fields.
        context: Prefix for error messages.

    Raises:
        ConfigurationError: If the type is unknown or a field is invalid.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"{context} must be a mapping with a 'type'", expected_type="mapping")

    raw_type = str(data.get("type", "")).lower()
    try:
        action_type = ActionType(raw_type)
    except ValueError:
        valid = ", ".join(t.value for t in ActionType)
        raise ConfigurationError(
            f"{context}: unknown action type '{raw_type}' (expected one of {valid})",
            config_key="type",
        )

    if action_type in (ActionType.MOVE, ActionType.COPY):
        create_dirs = data.get("create_dirs", True)
        if not isinstance(create_dirs, bool):
            raise ConfigurationError(
                f"{context}: 'create_dirs' must be a boolean",
                config_key="create_dirs",
                expected_type="bool",
            )
        cls = MoveAction if action_type == ActionType.MOVE else CopyAction
        return cls(destination=_require_str(data, "destination", context), create_dirs=create_dirs)

    elif action_type == ActionType.RENAME:
        return RenameAction(pattern=_require_str(data, "pattern", context))

    elif action_type == ActionType.RUN:
        args = data.get("args") or []
        if not isinstance(args, list) or not all(isinstance(a, (str, int, float)) for a in args):
            raise ConfigurationError(
                f"{context}: 'args' must be a list of strings",
                config_key="args",
                expected_type="list",
            )
        return RunAction(
            command=_require_str(data, "command", context),
            args=tuple(str(a) for a in args),
        )

    elif action_type == ActionType.ARCHIVE:
        return ArchiveAction(destination=_require_str(data, "destination", context))

    elif action_type == ActionType.TRASH:
        return TrashAction()

    elif action_type == ActionType.DELETE:
        return DeleteAction()

    return NothingAction()


def describe_action(action: Action) -> str:
    """One-line human description of an action."""
    if isinstance(action, (MoveAction, CopyAction, ArchiveAction)):
        return f"{action.type.value} -> {action.destination}"
    elif isinstance(action, RenameAction):
        return f"rename -> {action.pattern}"
    elif isinstance(action, RunAction):
        return " ".join(("run", action.command) + action.args)
    return action.type.value


@dataclass(frozen=True)
class Rule:
    """A named, ordered pair of conditions and an action.

    Attributes:
        name: User-facing name, not required to be unique.
        enabled: Disabled rules are skipped during evaluation.
        conditions: Predicates that must all hold.
        action: What to do with a matching entry.
    """
    name: str
    action: Action = field(default_factory=NothingAction)
    conditions: Condition = field(default_factory=Condition)
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "Rule":
        """Create a Rule from its configuration mapping."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"rules[{index}] must be a mapping", expected_type="mapping")

        name = str(data.get("name") or f"Rule {index + 1}")
        context = f"rule '{name}'"
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ConfigurationError(
                f"{context}: 'enabled' must be a boolean",
                config_key="enabled",
                expected_type="bool",
            )

        return cls(
            name=name,
            enabled=enabled,
            conditions=Condition.from_dict(data.get("conditions"), f"{context} conditions"),
            action=action_from_dict(data.get("action"), f"{context} action"),
        )

    def toggled(self) -> "Rule":
        """Return a copy with ``enabled`` flipped."""
        return replace(self, enabled=not self.enabled)
