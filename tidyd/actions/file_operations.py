"""
File Operations
===============

Executes a rule's action against one filesystem entry.

Every execution yields exactly one ActionResult, which the watcher turns
into exactly one event log entry: Success on success, Error on failure and
Warning for skipped cases. Nothing here is retried automatically.
"""

import errno
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import pyzipper
from send2trash import send2trash

from tidyd.actions import templates
from tidyd.actions.conflict_resolver import ConflictResolver, ConflictStrategy
from tidyd.actions.models import (
    Action,
    ArchiveAction,
    CopyAction,
    DeleteAction,
    MoveAction,
    NothingAction,
    RenameAction,
    RunAction,
    TrashAction,
)
from tidyd.utils.event_log import LogLevel
from tidyd.utils.exceptions import ActionError, ErrorCode, RuleError
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RUN_TIMEOUT = 60.0
STDERR_TAIL = 200


@dataclass
class ActionResult:
    """Outcome of one action execution.

    Attributes:
        level: Severity of the resulting log entry.
        message: Log message.
        destination: Effective destination, when the action produced one.
        error: Typed failure, when the action failed.
    """
    level: LogLevel
    message: str
    destination: Optional[Path] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None


class _Skipped(Exception):
    """Internal signal: the action was deliberately not carried out."""


class FileOperations:
    """Performs move/copy/rename/trash/delete/run/archive actions.

    Name collisions are resolved by the configured ConflictResolver.
    Moves fall back to copy-then-delete across filesystem boundaries.
    """

    def __init__(
        self,
        conflict_strategy: ConflictStrategy = ConflictStrategy.RENAME,
        run_timeout: float = DEFAULT_RUN_TIMEOUT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize file operations.

        Args:
            conflict_strategy: How destination collisions are handled.
            run_timeout: Seconds before a Run action's child is killed.
            clock: Source of "now" for {date}/{time} tokens.
        """
        self.resolver = ConflictResolver(conflict_strategy)
        self.run_timeout = run_timeout
        self.clock = clock

    def execute(self, path: Path, action: Action, rule_name: str = "") -> ActionResult:
        """Perform an action against one entry.

        Args:
            path: Absolute source path.
            action: Action to perform.
            rule_name: Name of the rule that fired, for messages.

        Returns:
            ActionResult describing the outcome. Never raises for
            action failures.
        """
        path = Path(path)
        prefix = f"[{rule_name}] " if rule_name else ""
        verb = action.type.value

        if isinstance(action, NothingAction):
            return ActionResult(LogLevel.INFO, f"{prefix}Matched {path.name} (no action)")

        context = templates.TemplateContext(path=path, now=self.clock())

        try:
            if not os.path.lexists(path):
                raise ActionError(
                    "Source no longer exists",
                    file_path=str(path),
                    error_code=ErrorCode.SOURCE_MISSING,
                )
            destination = self._dispatch(path, action, context, rule_name)

        except _Skipped as skipped:
            return ActionResult(LogLevel.WARNING, f"{prefix}Skipped {verb} of {path.name}: {skipped}")

        except (ActionError, RuleError) as e:
            logger.error(f"{verb} failed for {path}: {e}", extra={"file_path": str(path), "operation": verb})
            return ActionResult(
                LogLevel.ERROR,
                f"{prefix}Failed to {verb} {path.name}: {e.message}",
                error=e,
            )

        except OSError as e:
            error = _wrap_os_error(e, path, verb)
            logger.error(f"{verb} failed for {path}: {error}", extra={"file_path": str(path), "operation": verb})
            return ActionResult(
                LogLevel.ERROR,
                f"{prefix}Failed to {verb} {path.name}: {error.message}",
                error=error,
            )

        return ActionResult(
            LogLevel.SUCCESS,
            _success_message(prefix, action, path, destination),
            destination=destination,
        )

    def _dispatch(
        self,
        path: Path,
        action: Action,
        context: templates.TemplateContext,
        rule_name: str,
    ) -> Optional[Path]:
        if isinstance(action, MoveAction):
            return self.move(path, action, context)
        elif isinstance(action, CopyAction):
            return self.copy(path, action, context)
        elif isinstance(action, RenameAction):
            return self.rename(path, action, context)
        elif isinstance(action, TrashAction):
            self.trash(path)
            return None
        elif isinstance(action, DeleteAction):
            self.delete(path)
            return None
        elif isinstance(action, RunAction):
            self.run(path, action, context, rule_name)
            return None
        elif isinstance(action, ArchiveAction):
            return self.archive(path, action, context)
        raise TypeError(f"Unsupported action: {action!r}")

    # ------------------------------------------------------------------
    # Move / copy / rename
    # ------------------------------------------------------------------

    def _destination_dir(self, path: Path, template: str, context, create_dirs: bool) -> Path:
        dest_dir = templates.render_path(template, context)

        if path.is_dir() and not path.is_symlink():
            resolved_source = path.resolve()
            resolved_dest = dest_dir.resolve()
            if resolved_dest == resolved_source or resolved_source in resolved_dest.parents:
                raise ActionError(
                    f"Cannot place a directory inside itself: {dest_dir}",
                    file_path=str(path),
                    error_code=ErrorCode.DESTINATION_INVALID,
                )

        if dest_dir.exists() and not dest_dir.is_dir():
            raise ActionError(
                f"Destination is not a directory: {dest_dir}",
                file_path=str(path),
                error_code=ErrorCode.DESTINATION_INVALID,
            )
        if not dest_dir.exists():
            if not create_dirs:
                raise ActionError(
                    f"Destination directory does not exist: {dest_dir}",
                    file_path=str(path),
                    error_code=ErrorCode.DESTINATION_MISSING,
                )
            dest_dir.mkdir(parents=True, exist_ok=True)
        return dest_dir

    def _target(self, path: Path, target: Path) -> tuple:
        """Apply the conflict strategy to a wanted target path."""
        if _same_entry(path, target):
            raise _Skipped(f"already at {target}")

        decision, final = self.resolver.resolve(path, target)
        if decision == "skip":
            raise _Skipped(f"destination {target} already exists")
        return final, decision == "overwrite"

    def move(self, path: Path, action: MoveAction, context) -> Path:
        """Move an entry into the destination directory.

        Returns:
            Final path of the moved entry.
        """
        dest_dir = self._destination_dir(path, action.destination, context, action.create_dirs)
        target, overwrite = self._target(path, dest_dir / path.name)

        if overwrite:
            _remove(target)
        _relocate(path, target)
        logger.info(f"Moved: {path.name} -> {target}")
        return target

    def copy(self, path: Path, action: CopyAction, context) -> Path:
        """Copy an entry into the destination directory.

        Returns:
            Path of the copy.
        """
        dest_dir = self._destination_dir(path, action.destination, context, action.create_dirs)
        target, overwrite = self._target(path, dest_dir / path.name)

        if overwrite:
            _remove(target)
        _copy_entry(path, target)
        logger.info(f"Copied: {path.name} -> {target}")
        return target

    def rename(self, path: Path, action: RenameAction, context) -> Path:
        """Rename an entry within its directory.

        A pattern containing ``{n}`` takes the first free counter value;
        other patterns go through the conflict strategy.

        Returns:
            New path.
        """
        parent = path.parent

        if templates.uses_counter(action.pattern):
            target = None
            for counter in range(1, 10000):
                candidate = parent / templates.render_name(action.pattern, context, counter)
                if _same_entry(path, candidate):
                    raise _Skipped(f"already named {candidate.name}")
                if not (candidate.exists() or candidate.is_symlink()):
                    target = candidate
                    break
            if target is None:
                raise ActionError(
                    "No free name for rename pattern",
                    file_path=str(path),
                    error_code=ErrorCode.DESTINATION_INVALID,
                )
            overwrite = False
        else:
            target, overwrite = self._target(path, parent / templates.render_name(action.pattern, context))

        if overwrite:
            _remove(target)
        _relocate(path, target)
        logger.info(f"Renamed: {path.name} -> {target.name}")
        return target

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def trash(self, path: Path) -> None:
        """Send an entry to the OS trash."""
        try:
            send2trash(str(path))
        except OSError as e:
            raise ActionError(
                f"Could not move to trash: {e}",
                file_path=str(path),
                error_code=ErrorCode.TRASH_FAILED,
                cause=e,
            )
        logger.info(f"Trashed: {path}")

    def delete(self, path: Path) -> None:
        """Permanently remove an entry."""
        _remove(path)
        logger.info(f"Deleted: {path}")

    # ------------------------------------------------------------------
    # External commands
    # ------------------------------------------------------------------

    def build_command(self, action: RunAction, context) -> List[str]:
        """Render the argument vector for a Run action."""
        if action.args:
            words = [action.command, *action.args]
        else:
            words = shlex.split(action.command)
        if not words:
            raise RuleError("Run action has an empty command")
        return [templates.render(word, context) for word in words]

    def run(self, path: Path, action: RunAction, context, rule_name: str = "") -> None:
        """Run an external command with a bounded timeout.

        On timeout the child is killed and the action fails.
        """
        argv = self.build_command(action, context)
        env = dict(os.environ)
        env.update({
            "TIDYD_PATH": str(path),
            "TIDYD_NAME": path.name,
            "TIDYD_RULE": rule_name,
        })

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.run_timeout,
                cwd=str(path.parent),
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise ActionError(
                f"'{argv[0]}' timed out after {self.run_timeout:g}s",
                file_path=str(path),
                error_code=ErrorCode.PROCESS_TIMEOUT,
                cause=e,
            )
        except OSError as e:
            raise ActionError(
                f"Could not start '{argv[0]}': {e.strerror or e}",
                file_path=str(path),
                error_code=ErrorCode.PROCESS_FAILED,
                cause=e,
            )

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()[-STDERR_TAIL:]
            message = f"'{argv[0]}' exited with status {completed.returncode}"
            if stderr:
                message += f": {stderr}"
            raise ActionError(
                message,
                file_path=str(path),
                error_code=ErrorCode.PROCESS_FAILED,
                details={"returncode": completed.returncode},
            )
        logger.info(f"Ran: {' '.join(argv)}")

    # ------------------------------------------------------------------
    # Archives
    # ------------------------------------------------------------------

    def archive(self, path: Path, action: ArchiveAction, context) -> Path:
        """Compress an entry into ``<destination>/<name>.zip``.

        The source is left in place.

        Returns:
            Path of the archive.
        """
        dest_dir = self._destination_dir(path, action.destination, context, create_dirs=True)
        target, overwrite = self._target(path, dest_dir / f"{path.name}.zip")

        try:
            with pyzipper.ZipFile(target, "w", compression=pyzipper.ZIP_DEFLATED) as zf:
                if path.is_dir() and not path.is_symlink():
                    zf.write(path, arcname=path.name)
                    for child in sorted(path.rglob("*")):
                        zf.write(child, arcname=str(child.relative_to(path.parent)))
                else:
                    zf.write(path, arcname=path.name)
        except (OSError, ValueError) as e:
            if target.exists() and not overwrite:
                target.unlink()
            raise ActionError(
                f"Could not create archive: {e}",
                file_path=str(path),
                error_code=ErrorCode.ARCHIVE_FAILED,
                cause=e,
            )

        logger.info(f"Archived: {path.name} -> {target}")
        return target


def _success_message(prefix: str, action: Action, path: Path, destination: Optional[Path]) -> str:
    if isinstance(action, MoveAction):
        return f"{prefix}Moved {path.name} -> {destination}"
    elif isinstance(action, CopyAction):
        return f"{prefix}Copied {path.name} -> {destination}"
    elif isinstance(action, RenameAction):
        return f"{prefix}Renamed {path.name} -> {destination.name}"
    elif isinstance(action, TrashAction):
        return f"{prefix}Trashed {path.name}"
    elif isinstance(action, DeleteAction):
        return f"{prefix}Deleted {path.name}"
    elif isinstance(action, RunAction):
        return f"{prefix}Ran '{action.command}' on {path.name}"
    return f"{prefix}Archived {path.name} -> {destination}"


def _same_entry(source: Path, target: Path) -> bool:
    if source.parent.resolve() != target.parent.resolve():
        return False
    return source.name == target.name


def _wrap_os_error(error: OSError, path: Path, verb: str) -> ActionError:
    if isinstance(error, PermissionError):
        code = ErrorCode.PERMISSION_DENIED
    elif isinstance(error, FileNotFoundError):
        code = ErrorCode.SOURCE_MISSING
    else:
        code = ErrorCode.ACTION_FAILED
    return ActionError(
        error.strerror or str(error),
        file_path=str(path),
        error_code=code,
        details={"operation": verb},
        cause=error,
    )


def _copy_entry(source: Path, target: Path) -> None:
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, target, symlinks=True)
    else:
        shutil.copy2(source, target, follow_symlinks=False)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _relocate(source: Path, target: Path) -> None:
    """Rename, falling back to copy-then-delete across devices."""
    try:
        os.rename(source, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.debug(f"Cross-device move, copying: {source} -> {target}")
        _copy_entry(source, target)
        _remove(source)
