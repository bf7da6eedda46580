"""Manual page retrieval.

The manual page is the only reference the model is allowed to use.  It
is rendered with ``man`` as plain text (``MANPAGER=cat``), then
overstrike sequences and ANSI escapes used for bold and underline are
removed and runs of blank lines collapsed.
"""

from __future__ import annotations

import os
import re
import subprocess
from shutil import which
from typing import List, Optional, Sequence, Tuple

from .errors import ManPageError

_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_OVERSTRIKE = re.compile(r".\x08")
_BLANK_RUNS = re.compile(r"\n{3,}")


def parse_command(args: Sequence[str]) -> Tuple[str, str, List[str]]:
    """Split CLI words into ``(tool, section, question_words)``.

    Supports ``tool question...``, ``3 tool question...`` and
    ``-s 3 tool question...``.
    """
    args = list(args)
    if not args:
        return "", "", []
    if args[0] == "-s" and len(args) >= 3:
        return args[2], args[1], args[3:]
    first = args[0]
    if len(first) == 1 and first in "123456789":
        if len(args) >= 2:
            return args[1], first, args[2:]
        return first, "", []
    return first, "", args[1:]


def clean(content: str) -> str:
    """Strip terminal formatting from rendered man output."""
    content = _ANSI.sub("", content)
    content = _OVERSTRIKE.sub("", content)
    content = _BLANK_RUNS.sub("\n\n", content)
    return content.strip()


def _run_man(args: List[str]) -> Optional[str]:
    env = dict(os.environ, MANPAGER="cat", MANWIDTH="100")
    try:
        proc = subprocess.run(
            ["man", *args],
            capture_output=True,
            text=True,
            env=env,
            check=True,
        )
    except subprocess.CalledProcessError:
        return None
    return proc.stdout or None


def fetch(tool: str, section: str = "") -> str:
    """Return the cleaned manual page for ``tool``.

    :raises ManPageError: if ``man`` is unavailable or has no page.
    """
    if which("man") is None:
        raise ManPageError("the 'man' command is not installed")
    if section:
        # BSD and GNU man disagree on the section syntax; try both.
        output = _run_man([section, tool]) or _run_man(["-s", section, tool])
        if output is None:
            raise ManPageError(f"man page for {tool}({section}) not found")
    else:
        output = _run_man([tool])
        if output is None:
            raise ManPageError(f"man page for {tool!r} not found. Try: man -k {tool}")
    return clean(output)
