"""Per-directory ignore rules with .gitignore semantics.

Rules are loaded from ``.gitignore`` files as the walk discovers them and
apply to everything beneath the directory that holds them. Pattern matching
is pathspec's ``GitIgnoreSpec``; this module only decides which rule files
apply to a path and in what order. Across files the last match wins, so a
deeper ``.gitignore`` overrides its ancestors. Once a directory is ignored
nothing below it can be re-included, matching git.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import pathspec

from agentgalaxy.logging import get_logger

log = get_logger("model.ignore")

IGNORE_FILENAME = ".gitignore"
ALWAYS_IGNORED = frozenset({".git"})


def _compile(lines: list[str], origin: str) -> pathspec.GitIgnoreSpec:
    try:
        return pathspec.GitIgnoreSpec.from_lines(lines)
    except ValueError:
        pass
    # Skip the offending lines instead of losing the whole file
    valid = []
    for number, line in enumerate(lines, 1):
        try:
            pathspec.GitIgnoreSpec.from_lines([line])
        except ValueError as e:
            log.warning("Skipping invalid ignore pattern %s:%d %r: %s", origin, number, line, e)
            continue
        valid.append(line)
    return pathspec.GitIgnoreSpec.from_lines(valid)


@dataclass(frozen=True)
class IgnoreFile:
    """Compiled rules from one source, scoped to the directory holding it."""

    base: str  # Owning directory, relative to root, posix, "" for root
    spec: pathspec.GitIgnoreSpec
    source: str = "<patterns>"

    @classmethod
    def from_lines(cls, lines: Iterable[str], base: str = "", source: str = "<patterns>") -> IgnoreFile | None:
        """Compile ignore lines, or return None when none of them is a rule."""
        spec = _compile([line.rstrip("\r\n") for line in lines], source)
        if not any(p.include is not None for p in spec.patterns):
            return None
        return cls(base=base, spec=spec, source=source)

    def __len__(self) -> int:
        return sum(1 for p in self.spec.patterns if p.include is not None)

    def check(self, rel_path: str, is_dir: bool) -> bool | None:
        """Ignore verdict of the last matching rule.

        True ignores, False re-includes (``!``), None means no rule here
        matched the path.
        """
        if self.base:
            if not rel_path.startswith(self.base + "/"):
                return None
            rel_path = rel_path[len(self.base) + 1 :]
        if is_dir:
            # Directory-only patterns need the trailing slash
            rel_path += "/"
        return self.spec.check_file(rel_path).include


class IgnoreRules:
    """Ignore-rule set for one watched root.

    Paths passed in are relative to the root in posix form.
    """

    def __init__(self, root: Path, extra_patterns: Iterable[str] = ()) -> None:
        self._root = root
        self._extra = list(extra_patterns)
        self._files: dict[str, IgnoreFile] = {}
        self._global: list[IgnoreFile] = []
        self.reset()

    def reset(self) -> None:
        """Drop every loaded rule and reload the root-level sources."""
        self._files = {}
        # Lowest priority: info/exclude, then configured patterns
        sources = (
            self._read(self._root / ".git" / "info" / "exclude", ""),
            IgnoreFile.from_lines(self._extra, source="config"),
        )
        self._global = [source for source in sources if source is not None]
        self.load_directory("")

    def _read(self, path: Path, base: str) -> IgnoreFile | None:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("Cannot read ignore file %s: %s", path, e)
            return None
        return IgnoreFile.from_lines(text.splitlines(), base, source=str(path))

    def load_directory(self, rel_dir: str) -> None:
        """(Re)load the ignore file of one directory."""
        directory = self._root / rel_dir if rel_dir else self._root
        rules = self._read(directory / IGNORE_FILENAME, rel_dir)
        if rules is not None:
            self._files[rel_dir] = rules
            log.debug("Loaded %d ignore rules from %s", len(rules), directory)
        else:
            self._files.pop(rel_dir, None)

    def forget_directory(self, rel_dir: str) -> None:
        prefix = rel_dir + "/"
        for key in [k for k in self._files if k == rel_dir or k.startswith(prefix)]:
            del self._files[key]

    def _applicable(self, rel_path: str) -> list[IgnoreFile]:
        files = list(self._global)
        # Ancestors sort before descendants, so deeper files win
        for base in sorted(self._files):
            if base == "" or rel_path.startswith(base + "/"):
                files.append(self._files[base])
        return files

    def _match(self, rel_path: str, is_dir: bool) -> bool:
        ignored = False
        for rules in self._applicable(rel_path):
            verdict = rules.check(rel_path, is_dir)
            if verdict is not None:
                ignored = verdict
        return ignored

    def is_ignored(self, rel_path: str, is_dir: bool) -> bool:
        """Check a root-relative path, including whether any ancestor is ignored."""
        if not rel_path:
            return False
        parts = rel_path.split("/")
        if ALWAYS_IGNORED.intersection(parts):
            return True
        for i in range(1, len(parts)):
            if self._match("/".join(parts[:i]), True):
                return True
        return self._match(rel_path, is_dir)
