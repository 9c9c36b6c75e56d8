"""Path canonicalization and the snapshot path space.

Files embedded in the packaged artifact live under a virtual root
(``/snapshot`` on POSIX, ``C:\\snapshot`` on Windows). The helpers here map
real build-machine paths into that space and back into a display form.

Every helper accepts an optional ``win32`` flag; ``None`` means "the host
platform". None of them raise on malformed input.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re
import sys
from typing import Any, List, Optional

from constants import Constants

_DRIVE_ONLY = re.compile(r"^.:$")
_DRIVE_ROOTED = re.compile(r"^.:\\")
_WIN_SNAPSHOT_ROOT = re.compile(r"^.:\\snapshot$")
_WIN_SNAPSHOT_CHILD = re.compile(r"^.:\\snapshot\\")


def _is_win32(win32: Optional[bool]) -> bool:
    if win32 is None:
        return sys.platform == "win32"
    return win32


def _sep(win32: Optional[bool]) -> str:
    return "\\" if _is_win32(win32) else "/"


def _path_to_string(p: Any) -> str:
    if isinstance(p, bytes):
        return p.decode("utf-8", errors="surrogateescape")
    if isinstance(p, str):
        return p
    try:
        result = os.fspath(p)
    except TypeError:
        return str(p)
    if isinstance(result, bytes):
        return result.decode("utf-8", errors="surrogateescape")
    return result


def _uppercase_drive_letter(f: str) -> str:
    if f[1:3] != ":\\":
        return f
    return f[0].upper() + f[1:]


def _remove_trailing_slashes(f: str) -> str:
    if f == "/":
        return f
    if f[1:] == ":\\":
        return f
    while len(f) > 1 and f[-1] in ("/", "\\"):
        if f[1:] == ":\\":
            break
        f = f[:-1]
    return f


def normalize(path: Any, win32: Optional[bool] = None) -> str:
    """Canonicalize ``path`` so equivalent spellings compare equal.

    Collapses ``.`` and ``..`` segments, drops trailing separators except at
    a root and upper-cases the drive letter on Windows. A bare drive such as
    ``c:`` is returned as is (``ntpath`` would turn it into ``c:.``).
    """
    win = _is_win32(win32)
    file = _path_to_string(path)
    if file == "":
        return file

    if not _DRIVE_ONLY.match(file):
        file = (ntpath if win else posixpath).normpath(file)

    if win:
        file = _uppercase_drive_letter(file)

    return _remove_trailing_slashes(file)


def is_root_path(path: Any, win32: Optional[bool] = None) -> bool:
    """Return True when ``path`` is a filesystem root (``/``, ``C:\\``)."""
    mod = ntpath if _is_win32(win32) else posixpath
    file = _path_to_string(path)
    if file == ".":
        file = mod.abspath(file)
    return mod.dirname(file) == file


def to_normalized_real_path(path: Any) -> str:
    """Normalize ``path`` and follow symlinks when it exists on disk."""
    file = normalize(path)
    if os.path.exists(file):
        return os.path.realpath(file)
    return file


def is_package_json(file: str) -> bool:
    return os.path.basename(file) == Constants.PACKAGE_JSON_FILE


def is_dot_js(file: str) -> bool:
    return os.path.splitext(file)[1] in (".js", ".cjs")


def is_dot_json(file: str) -> bool:
    return os.path.splitext(file)[1] == ".json"


def is_dot_node(file: str) -> bool:
    return os.path.splitext(file)[1] == ".node"


def unlikely_javascript(file: str) -> bool:
    """Return True for files whose name says they are not JavaScript source."""
    lower = file.lower()
    return any(lower.endswith(suffix) for suffix in Constants.UNLIKELY_JAVASCRIPT_SUFFIXES)


def _without_node_modules(file: str, sep: str) -> str:
    return file.split(f"{sep}{Constants.NODE_MODULES}{sep}")[0]


def _longest_common_length(s1: str, s2: str) -> int:
    length = min(len(s1), len(s2))
    for i in range(length):
        if s1[i] != s2[i]:
            return i
    return length


def compute_denominator(files: List[str], win32: Optional[bool] = None) -> int:
    """Return the offset of the deepest directory shared by all ``files``.

    Each path is cut at its first ``node_modules`` segment first, so
    dependencies installed under different ``node_modules`` roots still share
    the project directory as their ancestor. Without any common prefix (for
    example distinct Windows drives) the root length is returned.

    Raises:
        ValueError: If ``files`` is empty.
    """
    if not files:
        raise ValueError("compute_denominator() needs at least one path")

    win = _is_win32(win32)
    sep = _sep(win)

    s1 = _without_node_modules(files[0], sep) + sep
    for other in files[1:]:
        s2 = _without_node_modules(other, sep) + sep
        s1 = s1[: _longest_common_length(s1, s2)]

    if s1 == "":
        return 2 if win else 0

    return s1.rfind(sep)


def substitute_denominator(file: str, denominator: int, win32: Optional[bool] = None) -> str:
    """Drop the part of ``file`` shared with every other embedded file.

    The drive prefix is kept on Windows. The remainder always starts with a
    separator so the result stays rooted.
    """
    win = _is_win32(win32)
    sep = _sep(win)
    root_length = 2 if win else 0
    rest = file[denominator:]
    if not rest.startswith(sep):
        rest = sep + rest
    return file[:root_length] + rest


def _replace_slashes(file: str, slash: str) -> str:
    if _DRIVE_ROOTED.match(file):
        if slash == "/":
            return file[2:].replace("\\", "/")
    elif file.startswith("/"):
        if slash == "\\":
            return "C:" + file.replace("/", "\\")
    return file


def _inject_snapshot(file: str) -> str:
    if _DRIVE_ROOTED.match(file):
        if len(file) == 3:
            file = file[:-1]
        # by convention the snapshot drive is always C:
        return Constants.SNAPSHOT_WIN32 + file[2:]

    if file.startswith("/"):
        if len(file) == 1:
            file = ""
        return Constants.SNAPSHOT_POSIX + file

    return file


def snapshotify(file: str, slash: str) -> str:
    """Move a rooted path under the snapshot root using ``slash`` separators."""
    return _inject_snapshot(_replace_slashes(file, slash))


def to_snapshot_path(file: str, denominator: int, win32: Optional[bool] = None) -> str:
    """Map a real path to its location inside the packaged artifact."""
    win = _is_win32(win32)
    return snapshotify(substitute_denominator(file, denominator, win), _sep(win))


def is_inside_snapshot(path: Any, win32: Optional[bool] = None) -> bool:
    """Return True for paths under the snapshot root, in either slash style."""
    f = _path_to_string(path)

    if _is_win32(win32):
        slice112 = f[1:12]
        return slice112 in (
            ":\\snapshot\\",
            ":/snapshot\\",
            ":\\snapshot/",
            ":/snapshot/",
        ) or f[1:] in (":\\snapshot", ":/snapshot")

    return f[:10] == "/snapshot/" or f == "/snapshot"


def strip_snapshot(path: str, win32: Optional[bool] = None) -> str:
    """Rewrite a snapshot path into the ``/**/`` form shown in diagnostics.

    Paths outside the snapshot are returned unchanged.
    """
    file = normalize(path, win32)

    if _WIN_SNAPSHOT_ROOT.match(file):
        return f"{file[0]}:\\**\\"

    if _WIN_SNAPSHOT_CHILD.match(file):
        return f"{file[0]}:\\**{file[11:]}"

    if file == "/snapshot":
        return "/**/"

    if file.startswith("/snapshot/"):
        return f"/**{file[9:]}"

    return path


def remove_leading_parent_segments(path: str, win32: Optional[bool] = None) -> str:
    """Strip leading ``../`` segments. Display only, never used to resolve."""
    prefix = "..\\" if _is_win32(win32) else "../"
    f = path
    while True:
        if f[:3] == prefix:
            f = f[3:]
        elif f == "..":
            f = "."
        else:
            break
    return f
