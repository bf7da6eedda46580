"""Response parsing and command validation.

The model is asked to answer with a command for one specific tool,
optionally followed by an explanation.  This module turns its raw text
into a :class:`~askman.models.ParsedResponse`:

* A refusal (the model stating the manual page does not cover the
  question) is reported as :class:`~askman.errors.NotFoundError`.
* In command-only mode, after Markdown code fences are removed, the
  text must begin with the tool name.  When the model still wraps the
  command in extra lines, the first non-empty line that starts with the
  tool name is used.
* In explain mode, the first non-empty line starting with the tool name
  is the command and every following non-empty line is the explanation.

Anything else is a :class:`~askman.errors.ValidationError`.  Parsing
never raises; the error is carried on the result so the pipeline can
decide whether to retry.

A separate, advisory check flags potentially destructive commands so the
caller can warn before the user runs them.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .errors import NotFoundError, ValidationError
from .models import ParsedResponse

REFUSAL_SENTINEL = "cannot find this information in the man page"
MAX_COMMAND_LENGTH = 1000

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n", re.MULTILINE)
_FENCE_CLOSE = re.compile(r"\n```[ \t]*$", re.MULTILINE)
_FENCE_LINE = re.compile(r"^```[A-Za-z0-9_+-]*$")

DANGEROUS_PATTERNS = [
    r"\brm\s+-[a-z]*r[a-z]*f|\brm\s+-[a-z]*f[a-z]*r",  # recursive forced remove
    r"\bsudo\s+rm\b",
    r"\bmkfs(\.\w+)?\b",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;",  # fork bomb
    r"\bdd\s+.*\bof=/dev/",
    r">\s*/dev/(sd|nvme|hd)",
    r"\b(shutdown|reboot|halt|poweroff)\b",
]


def strip_markdown(text: str) -> str:
    """Remove Markdown code fences and surrounding inline backticks."""
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_CLOSE.sub("", text)
    text = text.strip()
    if text.startswith("`"):
        text = text[1:]
    if text.endswith("`"):
        text = text[:-1]
    return text.strip()


def starts_with_tool(line: str, tool: str) -> bool:
    """Return True when ``line`` begins with ``tool`` as a whole word."""
    if not line.startswith(tool):
        return False
    rest = line[len(tool):]
    return not rest or rest[0].isspace()


def validate_command(command: str, tool: str) -> Tuple[bool, str]:
    """Sanity-check an extracted command.

    :param command: Command string extracted from the model output.
    :param tool: Tool the command must invoke.
    :returns: Tuple ``(is_valid, reason)``.  When ``is_valid`` is
      ``False``, ``reason`` describes why the command was rejected.
    """
    parts = command.split()
    if not parts:
        return False, "empty command"
    if parts[0] != tool:
        return False, f"command does not start with '{tool}', got '{parts[0]}'"
    if "\n" in command:
        return False, "command contains newlines"
    if len(command) > MAX_COMMAND_LENGTH:
        return False, f"command suspiciously long ({len(command)} chars)"
    return True, ""


def is_dangerous(command: str) -> bool:
    """Return True if the command contains destructive operations.

    This does not invalidate the command; it lets the caller print a
    warning before the user copies it into a shell.
    """
    return any(re.search(p, command, flags=re.IGNORECASE) for p in DANGEROUS_PATTERNS)


class ResponseParser:
    """Parse raw model output for one tool.

    :param tool: Name of the tool every command must start with.
    :param explain_mode: When ``True`` the output is expected to hold a
      command followed by an explanation.
    """

    def __init__(self, tool: str, explain_mode: bool = False) -> None:
        self.tool = tool
        self.explain_mode = explain_mode

    def parse(self, raw: str) -> ParsedResponse:
        text = raw.strip()
        if REFUSAL_SENTINEL in text:
            return ParsedResponse.failure(NotFoundError("information not found in man page"))
        if self.explain_mode:
            return self._parse_explain(text)
        return self._parse_command_only(text)

    def _accept(self, command: str, explanation: str = "") -> ParsedResponse:
        ok, reason = validate_command(command, self.tool)
        if not ok:
            return ParsedResponse.failure(ValidationError(reason))
        return ParsedResponse(command=command, explanation=explanation, valid=True)

    def _parse_command_only(self, text: str) -> ParsedResponse:
        text = strip_markdown(text)
        if not starts_with_tool(text, self.tool):
            return ParsedResponse.failure(
                ValidationError(f"response does not start with command '{self.tool}'")
            )
        for line in text.splitlines():
            line = line.strip()
            if line and starts_with_tool(line, self.tool):
                return self._accept(line)
        return ParsedResponse.failure(
            ValidationError("response contains multiple lines without valid command")
        )

    def _parse_explain(self, text: str) -> ParsedResponse:
        if not text:
            return ParsedResponse.failure(ValidationError("empty response"))
        lines = text.splitlines()
        command: Optional[str] = None
        start = 0
        for index, line in enumerate(lines):
            line = strip_markdown(line.strip())
            # Lines before the command are preamble.
            if line and starts_with_tool(line, self.tool):
                command = line
                start = index + 1
                break
        if command is None:
            return ParsedResponse.failure(
                ValidationError(
                    f"no command found in response (expected line starting with '{self.tool}')"
                )
            )
        explanation: List[str] = []
        for line in lines[start:]:
            line = line.strip()
            if line and not _FENCE_LINE.match(line):
                explanation.append(line)
        return self._accept(command, "\n".join(explanation))
