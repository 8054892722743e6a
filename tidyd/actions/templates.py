"""
Token Templates
===============

Substitution grammar shared by destination paths, rename patterns and run
commands.

Tokens:
    {path}  absolute source path
    {name}  base name
    {stem}  base name without its last extension
    {ext}   last extension, without the dot
    {dir}   parent directory
    {date}  today's date, ISO format (YYYY-MM-DD)
    {time}  current time (HHMMSS)
    {n}     numeric disambiguator (rename patterns only)

``{{`` and ``}}`` produce literal braces.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from tidyd.utils.exceptions import ErrorCode, RuleError

TOKENS = ("path", "name", "stem", "ext", "dir", "date", "time", "n")

_TOKEN_RE = re.compile(r"\{\{|\}\}|\{([^{}]*)\}")


def expand_path(path: str) -> Path:
    """Expand ``~`` and ``~/...`` to the user's home directory."""
    return Path(path).expanduser()


def split_name(name: str) -> tuple:
    """Split a base name into (stem, ext) on its last dot.

    Dot-files such as ``.bashrc`` have no extension.
    """
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        return name, ""
    return stem, ext


@dataclass
class TemplateContext:
    """Values available to a template for one source path."""
    path: Path
    now: datetime = field(default_factory=datetime.now)

    def values(self, counter: Optional[int] = None) -> Dict[str, str]:
        stem, ext = split_name(self.path.name)
        values = {
            "path": str(self.path),
            "name": self.path.name,
            "stem": stem,
            "ext": ext,
            "dir": str(self.path.parent),
            "date": self.now.date().isoformat(),
            "time": self.now.strftime("%H%M%S"),
        }
        if counter is not None:
            values["n"] = str(counter)
        return values


def uses_counter(template: str) -> bool:
    """Check whether a template contains the ``{n}`` token."""
    return any(m.group(1) == "n" for m in _TOKEN_RE.finditer(template))


def validate(template: str, allow_counter: bool = False) -> None:
    """Raise RuleError if the template references unknown tokens."""
    for match in _TOKEN_RE.finditer(template):
        token = match.group(1)
        if token is None:
            continue
        if token not in TOKENS or (token == "n" and not allow_counter):
            raise RuleError(
                f"Unknown template token '{{{token}}}' in '{template}'",
                error_code=ErrorCode.INVALID_TEMPLATE,
            )
    if "{" in _TOKEN_RE.sub("", template) or "}" in _TOKEN_RE.sub("", template):
        raise RuleError(
            f"Unbalanced brace in template '{template}'",
            error_code=ErrorCode.INVALID_TEMPLATE,
        )


def render(template: str, context: TemplateContext, counter: Optional[int] = None) -> str:
    """Substitute tokens in a template.

    Args:
        template: Template string.
        context: Values for the source path.
        counter: Value for ``{n}``; required when the template uses it.

    Returns:
        The rendered string.

    Raises:
        RuleError: If the template is malformed or uses an unknown token.
    """
    validate(template, allow_counter=counter is not None)
    values = context.values(counter)

    def substitute(match):
        if match.group(0) == "{{":
            return "{"
        if match.group(0) == "}}":
            return "}"
        return values[match.group(1)]

    return _TOKEN_RE.sub(substitute, template)


def render_name(template: str, context: TemplateContext, counter: Optional[int] = None) -> str:
    """Render a template that must yield a single file name.

    An empty ``{ext}`` leaves no trailing dot behind.
    """
    name = render(template, context, counter).rstrip(".")
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise RuleError(
            f"Pattern '{template}' does not produce a valid file name ('{name}')",
            error_code=ErrorCode.INVALID_TEMPLATE,
        )
    return name


def render_path(template: str, context: TemplateContext) -> Path:
    """Render a destination template into an absolute path.

    Relative results are resolved against the source's directory.
    """
    path = expand_path(render(template, context))
    if not path.is_absolute():
        path = context.path.parent / path
    return path
