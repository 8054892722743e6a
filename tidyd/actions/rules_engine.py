"""
Rules Engine
============

Evaluates an ordered rule list against a file metadata snapshot.
The first enabled rule whose conditions all hold wins; later rules are not
consulted. Matching never touches the filesystem, so dispatching the
resulting action is a separate step.
"""

import os
import re
import stat
import time
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Set, Tuple, Union

from tidyd.actions import templates
from tidyd.actions.models import (
    Action,
    ArchiveAction,
    Condition,
    CopyAction,
    MoveAction,
    RenameAction,
    Rule,
    RunAction,
)
from tidyd.utils.exceptions import ErrorCode, RuleError
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class FileMetadata:
    """Snapshot of the facts conditions are evaluated against.

    Attributes:
        path: Absolute path of the entry.
        size: Size in bytes as reported by lstat.
        modified: Modification time (epoch seconds).
        is_dir: Whether the entry is a directory.
        is_hidden: Platform-appropriate hidden flag.
    """
    path: Path
    size: int
    modified: float
    is_dir: bool
    is_hidden: bool

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_stat(cls, path: Path, st: os.stat_result) -> "FileMetadata":
        """Build a snapshot from an already-taken stat result."""
        return cls(
            path=path,
            size=st.st_size,
            modified=st.st_mtime,
            is_dir=stat.S_ISDIR(st.st_mode),
            is_hidden=is_hidden(path, st),
        )

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileMetadata":
        """Stat a path (without following symlinks) and snapshot it."""
        path = Path(path).absolute()
        return cls.from_stat(path, os.lstat(path))


def is_hidden(path: Path, st: Optional[os.stat_result] = None) -> bool:
    """Hidden-file detection: dot prefix on POSIX, hidden attribute on Windows."""
    if os.name == "nt":
        attributes = getattr(st, "st_file_attributes", 0) if st is not None else 0
        return bool(attributes & stat.FILE_ATTRIBUTE_HIDDEN)
    return path.name.startswith(".")


def age_in_days(modified: float, now: float) -> int:
    """Whole days since modification, truncated toward zero."""
    return int((now - modified) / SECONDS_PER_DAY)


def compile_name_regex(pattern: str, rule_name: Optional[str] = None) -> Pattern:
    """Compile a rule's name regex.

    Raises:
        RuleError: If the pattern does not compile.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleError(
            f"Invalid name regex '{pattern}': {e}",
            rule_name=rule_name,
            error_code=ErrorCode.INVALID_REGEX,
            cause=e,
        )


def _extension_matches(name: str, extension: str) -> bool:
    wanted = extension.lstrip(".").lower()
    if not wanted:
        return False
    lowered = name.lower()
    suffix = "." + wanted
    # The extension must follow a non-empty stem: ".bashrc" has none
    return lowered.endswith(suffix) and len(lowered) > len(suffix)


def condition_matches(
    condition: Condition,
    metadata: FileMetadata,
    now: Optional[float] = None,
    name_regex: Optional[Pattern] = None,
) -> bool:
    """Check whether every populated predicate holds for the snapshot.

    Glob and regex predicates only ever see the base name.

    Args:
        condition: Predicates to check.
        metadata: File snapshot.
        now: Wall-clock time for age checks (defaults to time.time()).
        name_regex: Precompiled ``condition.name_regex``.

    Returns:
        True if the entry matches.

    Raises:
        RuleError: If ``name_regex`` must be compiled here and is invalid.
    """
    name = metadata.name

    if condition.is_directory is not None and condition.is_directory != metadata.is_dir:
        return False

    if condition.is_hidden is not None and condition.is_hidden != metadata.is_hidden:
        return False

    if condition.extension is not None and not _extension_matches(name, condition.extension):
        return False

    if condition.name_glob is not None and not fnmatch(name, condition.name_glob):
        return False

    if condition.name_regex is not None:
        pattern = name_regex or compile_name_regex(condition.name_regex)
        if not pattern.search(name):
            return False

    if condition.size_greater is not None and not metadata.size > condition.size_greater:
        return False

    if condition.size_less is not None and not metadata.size < condition.size_less:
        return False

    if condition.age_greater is not None or condition.age_less is not None:
        days = age_in_days(metadata.modified, time.time() if now is None else now)
        if condition.age_greater is not None and not days > condition.age_greater:
            return False
        if condition.age_less is not None and not days < condition.age_less:
            return False

    return True


@dataclass(frozen=True)
class RuleMatch:
    """Outcome of a successful evaluation."""
    index: int
    rule: Rule

    @property
    def action(self) -> Action:
        return self.rule.action


RuleErrorCallback = Callable[[int, Rule, RuleError], None]


class RuleEngine:
    """Engine for evaluating rules in stored order.

    Compiled regexes are cached by pattern and template checks by action.
    A rule whose regex does not compile, or whose action carries a
    malformed template, is skipped; the error is reported once per rule
    through ``on_rule_error`` until ``reset()`` is called.
    """

    def __init__(self, on_rule_error: Optional[RuleErrorCallback] = None):
        """Initialize the rules engine.

        Args:
            on_rule_error: Called with (index, rule, error) for skipped rules.
        """
        self.on_rule_error = on_rule_error
        self._regex_cache: Dict[str, Union[Pattern, RuleError]] = {}
        self._template_cache: Dict[Action, Optional[RuleError]] = {}
        self._reported: Set[Tuple[int, str]] = set()

    def reset(self) -> None:
        """Forget cached regexes, template checks and reported rule errors."""
        self._regex_cache.clear()
        self._template_cache.clear()
        self._reported.clear()

    def _regex_for(self, rule: Rule) -> Optional[Pattern]:
        pattern = rule.conditions.name_regex
        if pattern is None:
            return None
        cached = self._regex_cache.get(pattern)
        if cached is None:
            try:
                cached = compile_name_regex(pattern, rule.name)
            except RuleError as e:
                cached = e
            self._regex_cache[pattern] = cached
        if isinstance(cached, RuleError):
            raise cached
        return cached

    def _check_templates(self, rule: Rule) -> None:
        if rule.action not in self._template_cache:
            try:
                check_action_templates(rule.action)
                self._template_cache[rule.action] = None
            except RuleError as e:
                self._template_cache[rule.action] = e
        error = self._template_cache[rule.action]
        if error is not None:
            raise error

    def _report(self, index: int, rule: Rule, error: RuleError) -> None:
        key = (index, rule.name)
        if key in self._reported:
            return
        self._reported.add(key)
        logger.warning(f"Skipping rule '{rule.name}': {error.message}")
        if self.on_rule_error:
            self.on_rule_error(index, rule, error)

    def evaluate(
        self,
        metadata: FileMetadata,
        rules: Sequence[Rule],
        now: Optional[float] = None,
    ) -> Optional[RuleMatch]:
        """Evaluate a file against the rule list.

        Args:
            metadata: File snapshot.
            rules: Rules in priority order.
            now: Wall-clock time for age checks.

        Returns:
            RuleMatch for the first enabled matching rule, None otherwise.
        """
        now = time.time() if now is None else now

        for index, rule in enumerate(rules):
            if not rule.enabled:
                continue
            try:
                regex = self._regex_for(rule)
                self._check_templates(rule)
            except RuleError as e:
                self._report(index, rule, e)
                continue

            if condition_matches(rule.conditions, metadata, now=now, name_regex=regex):
                logger.debug(f"Rule matched: '{rule.name}' for {metadata.name}")
                return RuleMatch(index=index, rule=rule)

        return None

    def check_rules(self, rules: Sequence[Rule]) -> List[Tuple[int, Rule, RuleError]]:
        """Statically validate rules without evaluating any file.

        Reports invalid regexes and malformed templates.

        Returns:
            List of (index, rule, error) for every problem found.
        """
        problems = []
        for index, rule in enumerate(rules):
            try:
                self._regex_for(rule)
                self._check_templates(rule)
            except RuleError as e:
                problems.append((index, rule, e))
        return problems


def check_action_templates(action: Action) -> None:
    """Validate the templates an action carries.

    Raises:
        RuleError: On the first malformed template.
    """
    if isinstance(action, (MoveAction, CopyAction, ArchiveAction)):
        templates.validate(action.destination)
    elif isinstance(action, RenameAction):
        templates.validate(action.pattern, allow_counter=True)
    elif isinstance(action, RunAction):
        templates.validate(action.command)
        for arg in action.args:
            templates.validate(arg)
