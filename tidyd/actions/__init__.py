"""Actions module: rule model, matching and file operations."""

from .models import (
    Action,
    ActionType,
    ArchiveAction,
    Condition,
    CopyAction,
    DeleteAction,
    MoveAction,
    NothingAction,
    RenameAction,
    Rule,
    RunAction,
    TrashAction,
)
from .rules_engine import RuleEngine, RuleMatch, FileMetadata, condition_matches
from .conflict_resolver import ConflictResolver, ConflictStrategy
from .file_operations import FileOperations, ActionResult

__all__ = [
    "Action",
    "ActionType",
    "ArchiveAction",
    "Condition",
    "CopyAction",
    "DeleteAction",
    "MoveAction",
    "NothingAction",
    "RenameAction",
    "Rule",
    "RunAction",
    "TrashAction",
    "RuleEngine",
    "RuleMatch",
    "FileMetadata",
    "condition_matches",
    "ConflictResolver",
    "ConflictStrategy",
    "FileOperations",
    "ActionResult",
]
