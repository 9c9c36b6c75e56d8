"""Parsing and evaluation of the package.json ``"exports"`` field.

The raw field is a loosely typed JSON value (string, array, object of
conditions or of subpaths, ``null``). ``parse_exports`` turns it into the
tagged ``ExportsNode`` variants once per manifest; ``evaluate_exports`` is
plain structural recursion over those variants.

Evaluation returns ``None`` when nothing matched, ``Leaf(None)`` when the
subpath is explicitly excluded and ``Leaf("./target")`` on a match. Targets
are not checked against the filesystem here.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

from constants import Constants
from resolution.models import Conditional, ExportsNode, Leaf, ListNode, SubpathMap

logger = logging.getLogger(__name__)

_FORBIDDEN_SEGMENTS = ("", ".", "..", Constants.NODE_MODULES)


def _parse_node(value: Any) -> Optional[ExportsNode]:
    if value is None:
        return Leaf(None)
    if isinstance(value, str):
        return Leaf(value)
    if isinstance(value, list):
        items = tuple(n for n in (_parse_node(v) for v in value) if n is not None)
        return ListNode(items)
    if isinstance(value, dict):
        entries = []
        for key, child in value.items():
            node = _parse_node(child)
            if node is not None:
                entries.append((str(key), node))
        return Conditional(tuple(entries))
    return None


def parse_exports(value: Any) -> Optional[ExportsNode]:
    """Convert a raw top-level ``"exports"`` value into an ``ExportsNode``.

    Returns ``None`` when the field is absent, ``null`` or malformed (an
    object mixing ``"./x"`` keys with condition names), which makes the
    resolver use the legacy ``"main"`` lookup.
    """
    if value is None:
        return None

    if isinstance(value, dict) and value:
        dotted = [str(k).startswith(".") for k in value]
        if all(dotted):
            entries = []
            for key, child in value.items():
                node = _parse_node(child)
                if node is not None:
                    entries.append((str(key), node))
            return SubpathMap(tuple(entries))
        if any(dotted):
            logger.debug("Ignoring \"exports\" mixing subpaths and conditions: %s", list(value))
            return None

    return _parse_node(value)


def _valid_target(target: str) -> bool:
    if not target.startswith("./"):
        return False
    segments = target[2:].split("/")
    # a trailing "/" is only meaningful for folder mappings
    if segments and segments[-1] == "":
        segments = segments[:-1]
    return not any(seg in _FORBIDDEN_SEGMENTS for seg in segments)


def _resolve_target(
    node: ExportsNode,
    conditions: Sequence[str],
    replacement: Optional[str],
    folder: bool,
) -> Optional[Leaf]:
    if isinstance(node, Leaf):
        if node.target is None:
            return node
        target = node.target
        if replacement is not None:
            target = target + replacement if folder else target.replace("*", replacement)
        if not _valid_target(target):
            logger.debug("Ignoring invalid \"exports\" target %r", target)
            return None
        return Leaf(target)

    if isinstance(node, ListNode):
        for item in node.items:
            resolved = _resolve_target(item, conditions, replacement, folder)
            if resolved is not None:
                return resolved
        return None

    if isinstance(node, Conditional):
        excluded = False
        candidates = list(conditions)
        if "default" not in candidates:
            candidates.append("default")
        for condition in candidates:
            child = node.get(condition)
            if child is None:
                continue
            resolved = _resolve_target(child, conditions, replacement, folder)
            if resolved is None:
                continue
            if resolved.target is None:
                excluded = True
                continue
            return resolved
        return Leaf(None) if excluded else None

    # a subpath map nested below the top level is not meaningful
    return None


def _pattern_sort_key(key: str) -> Tuple[int, int]:
    star = key.find("*")
    base_length = star + 1 if star != -1 else len(key)
    return (-base_length, -len(key))


def _match_subpath(
    node: SubpathMap, subpath: str
) -> Optional[Tuple[ExportsNode, Optional[str], bool]]:
    for key, child in node.mapping:
        if key == subpath:
            return child, None, False

    best = None
    for key, child in sorted(node.mapping, key=lambda kv: _pattern_sort_key(kv[0])):
        star = key.find("*")
        if star != -1:
            if key.find("*", star + 1) != -1:
                continue
            prefix, suffix = key[:star], key[star + 1:]
            if (
                subpath.startswith(prefix)
                and subpath != prefix
                and (not suffix or (subpath.endswith(suffix) and len(subpath) >= len(key)))
            ):
                middle = subpath[len(prefix): len(subpath) - len(suffix)]
                return child, middle, False
        elif key.endswith("/") and subpath.startswith(key):
            if best is None or len(key) > len(best[0]):
                best = (key, child)

    if best is not None:
        return best[1], subpath[len(best[0]):], True
    return None


def evaluate_exports(
    node: ExportsNode, subpath: str, conditions: Sequence[str]
) -> Optional[Leaf]:
    """Evaluate ``node`` for ``subpath`` (``"."`` or ``"./x"``).

    Conditions are searched in the order of ``conditions`` rather than the
    manifest's key order; ``"default"`` is tried last when not listed.
    """
    if isinstance(node, SubpathMap):
        matched = _match_subpath(node, subpath)
        if matched is None:
            return None
        child, replacement, folder = matched
        return _resolve_target(child, conditions, replacement, folder)

    if subpath != ".":
        return None
    return _resolve_target(node, conditions, None, False)
