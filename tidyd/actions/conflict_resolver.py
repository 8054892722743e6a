"""
Conflict Resolver
=================

Strategies for resolving destination name collisions.
"""

from pathlib import Path
from typing import Optional, Tuple
from enum import Enum

from tidyd.actions.templates import split_name
from tidyd.utils.exceptions import ActionError, ErrorCode
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_DISAMBIGUATOR = 9999


class ConflictStrategy(Enum):
    """Strategy for handling conflicts."""

    RENAME = "rename"  # Add " (n)" before the extension
    SKIP = "skip"  # Leave the source alone
    OVERWRITE = "overwrite"  # Replace the existing entry


class ConflictResolver:
    """Resolves destination collisions based on configured strategy.

    The default never overwrites: ``file.txt`` becomes ``file (1).txt``,
    then ``file (2).txt`` and so on.
    """

    def __init__(self, strategy: ConflictStrategy = ConflictStrategy.RENAME):
        """Initialize conflict resolver.

        Args:
            strategy: Conflict resolution strategy.
        """
        self.strategy = strategy

    def resolve(
        self, source: Path, dest_path: Path, strategy: Optional[ConflictStrategy] = None
    ) -> Tuple[str, Optional[Path]]:
        """Resolve a destination collision.

        Args:
            source: Source entry to move/copy.
            dest_path: Intended destination path.
            strategy: Override default strategy.

        Returns:
            Tuple of (action, final_path) where action is
            'proceed', 'skip' or 'overwrite'.
        """
        strategy = strategy or self.strategy

        # lexists: a dangling symlink still occupies the name
        if not _occupied(dest_path):
            return "proceed", dest_path

        if strategy == ConflictStrategy.SKIP:
            logger.info(f"Skipping (exists): {source.name}")
            return "skip", None

        elif strategy == ConflictStrategy.OVERWRITE:
            logger.info(f"Overwriting: {dest_path.name}")
            return "overwrite", dest_path

        return "proceed", self.unique_path(dest_path)

    def unique_path(self, path: Path) -> Path:
        """Generate an unused path by appending a counter before the extension.

        Args:
            path: Original path.

        Returns:
            ``path`` itself if free, otherwise the first free ``stem (n).ext``.

        Raises:
            ActionError: If no free name is found.
        """
        if not _occupied(path):
            return path

        stem, ext = split_name(path.name)
        suffix = f".{ext}" if ext else ""
        parent = path.parent

        for counter in range(1, MAX_DISAMBIGUATOR + 1):
            candidate = parent / f"{stem} ({counter}){suffix}"
            if not _occupied(candidate):
                return candidate

        raise ActionError(
            "Too many entries with the same name",
            file_path=str(path),
            error_code=ErrorCode.DESTINATION_INVALID,
        )


def _occupied(path: Path) -> bool:
    return path.exists() or path.is_symlink()
