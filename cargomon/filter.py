import fnmatch
import os
from dataclasses import dataclass
from typing import Tuple

# Always ignored. Watching the build output or VCS metadata would make every
# build trigger the next one.
DEFAULT_IGNORES = (
    "target/**",
    "**/.git/**",
    "**/.hg/**",
    "**/.svn/**",
    "**/node_modules/**",
    "**/__pycache__/**",
    "Cargo.lock",
    "*.swp",
    "*.swx",
    "*~",
    ".#*",
    "4913",
)


@dataclass(frozen=True)
class WatchRule:
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    # Suffixes such as ".rs"; matched case-sensitively.
    extensions: Tuple[str, ...] = ()
    roots: Tuple[str, ...] = ()


def _relative(path, roots):
    path = os.path.abspath(path)
    if not roots:
        return path.replace(os.sep, "/").lstrip("/")
    for root in roots:
        root = os.path.abspath(root)
        if path == root:
            return ""
        if path.startswith(root.rstrip(os.sep) + os.sep):
            return os.path.relpath(path, root).replace(os.sep, "/")
    return None


def _matches(rel_path, pattern):
    pattern = pattern.replace("\\", "/").strip()
    if not pattern:
        return False
    if pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.strip("/")
    if "/" not in pattern:
        # Bare patterns name files: "*.rs", "Cargo.lock".
        return fnmatch.fnmatchcase(rel_path.rsplit("/", 1)[-1], pattern)
    return _glob(rel_path, pattern)


def _glob(rel_path, pattern):
    if pattern.endswith("/**"):
        base = pattern[:-3]
        return _glob(rel_path, base) or _glob(rel_path, base + "/*")
    if pattern.startswith("**/"):
        rest = pattern[3:]
        return fnmatch.fnmatchcase(rel_path, rest) or fnmatch.fnmatchcase(rel_path, "*/" + rest)
    return fnmatch.fnmatchcase(rel_path, pattern)


def is_ignored(rel_path, rule: WatchRule) -> bool:
    return any(_matches(rel_path, p) for p in DEFAULT_IGNORES + tuple(rule.exclude))


def relevant(path, rule: WatchRule) -> bool:
    """
    Decide whether a change to ``path`` should trigger a rebuild.

    Exclusions (the rule's plus DEFAULT_IGNORES) win over inclusions. With no
    include patterns and no extensions every other path is relevant. Never
    raises: anything that cannot be matched is not relevant.
    """
    try:
        rel_path = _relative(os.fspath(path), rule.roots)
        if not rel_path:
            return False
        if is_ignored(rel_path, rule):
            return False
        if not rule.include and not rule.extensions:
            return True
        if rule.extensions and rel_path.endswith(tuple(rule.extensions)):
            return True
        return any(_matches(rel_path, p) for p in rule.include)
    except (TypeError, ValueError, AttributeError):
        return False
