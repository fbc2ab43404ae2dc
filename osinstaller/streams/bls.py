"""Reading and writing BLS bootloader entries, including kernel arguments."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

_REPLACE_RE = re.compile(r"([^=]+)=([^=]+)=([^=]+)")
_OPTIONS_PREFIX = "options "


class BlsError(Exception):
    """A BLS entry could not be found, read, understood or updated."""


Visitor = Callable[[str], Optional[str]]


def _lines(text: str) -> list[str]:
    """Split text into lines the way a line iterator does: no trailing empty line."""
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def visit_bls_entry(mountpoint: str | os.PathLike[str], func: Visitor) -> bool:
    """Call ``func`` on the contents of the default BLS entry.

    The default entry is the last ``*.conf`` file in ``loader/entries`` by
    sorted name.  If ``func`` returns a string, the entry is rewritten with
    it.  Returns True if the entry was modified.
    """
    config_path = Path(mountpoint) / "loader" / "entries"
    try:
        entries = sorted(
            entry for entry in config_path.iterdir() if entry.suffix == ".conf"
        )
    except OSError as err:
        raise BlsError(f"reading directory {config_path}: {err}") from err
    if not entries:
        raise BlsError(f"Found no BLS entries in {config_path}")

    path = entries[-1]
    try:
        config = open(path, "r+b")
    except OSError as err:
        raise BlsError(f"opening bootloader config {path}: {err}") from err
    with config:
        try:
            orig_contents = config.read().decode("utf-8")
        except (OSError, UnicodeDecodeError) as err:
            raise BlsError(f"reading {path}: {err}") from err

        try:
            new_contents = func(orig_contents)
        except (BlsError, ValueError, OSError) as err:
            raise BlsError(f"visiting {path}: {err}") from err

        if new_contents is None:
            return False
        try:
            config.seek(0)
            config.truncate(0)
            config.write(new_contents.encode("utf-8"))
        except OSError as err:
            raise BlsError(f"writing {path}: {err}") from err
    return True


def visit_bls_entry_options(mountpoint: str | os.PathLike[str], func: Visitor) -> bool:
    """Call ``func`` on the ``options`` line of the default BLS entry.

    Exactly one ``options`` line must exist.  If ``func`` returns a string,
    the line is replaced with it.  Returns True if the entry was modified.
    """

    def visit(orig_contents: str) -> Optional[str]:
        new_lines: list[str] = []
        found_options = False
        modified = False
        for line in _lines(orig_contents):
            if not line.startswith(_OPTIONS_PREFIX):
                new_lines.append(line.rstrip())
            elif found_options:
                raise BlsError("Multiple 'options' lines found")
            else:
                try:
                    new_options = func(line[len(_OPTIONS_PREFIX):].strip())
                except (BlsError, ValueError, OSError) as err:
                    raise BlsError(f"visiting options: {err}") from err
                if new_options is not None:
                    new_lines.append(_OPTIONS_PREFIX + new_options.strip())
                    modified = True
                else:
                    new_lines.append("")
                found_options = True
        if not found_options:
            raise BlsError("Couldn't locate 'options' line")
        if not modified:
            return None
        return "".join(line + "\n" for line in new_lines)

    return visit_bls_entry(mountpoint, visit)


@dataclass
class KargsEditor:
    """Accumulates kernel argument edits and applies them to an argument string."""

    _append: list[str] = field(default_factory=list)
    _append_if_missing: list[str] = field(default_factory=list)
    _replace: list[str] = field(default_factory=list)
    _delete: list[str] = field(default_factory=list)

    def append(self, args: Iterable[str]) -> KargsEditor:
        self._append.extend(args)
        return self

    def append_if_missing(self, args: Iterable[str]) -> KargsEditor:
        self._append_if_missing.extend(args)
        return self

    def replace(self, args: Iterable[str]) -> KargsEditor:
        """Queue replacements, each in ``KEY=OLD=NEW`` form."""
        self._replace.extend(args)
        return self

    def delete(self, args: Iterable[str]) -> KargsEditor:
        self._delete.extend(args)
        return self

    def apply_to(self, current_kargs: str) -> str:
        """Return ``current_kargs`` with deletions, appends and replacements applied.

        Matching is a plain substring search on space-delimited arguments.
        """
        new_kargs = f" {current_kargs} "
        for karg in self._delete:
            new_kargs = new_kargs.replace(f" {karg.strip()} ", " ")
        for karg in self._append:
            new_kargs += karg.strip() + " "
        for karg in self._append_if_missing:
            karg = karg.strip()
            if f" {karg} " not in new_kargs:
                new_kargs += karg + " "
        for karg in self._replace:
            match = _REPLACE_RE.fullmatch(karg)
            if match is None:
                raise ValueError("Wrong input, format should be: KEY=OLD=NEW")
            key, old, new = match.groups()
            new_kargs = new_kargs.replace(f" {key}={old} ", f" {key}={new} ")
        return new_kargs.strip()

    def maybe_apply_to(self, current_kargs: str) -> Optional[str]:
        """Return None if no edits were requested, else the edited arguments."""
        if self == KargsEditor():
            return None
        return self.apply_to(current_kargs)