"""Data models for module resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from constants import Constants, ModuleKind


@dataclass(frozen=True)
class Leaf:
    """A direct export target; ``None`` means the subpath is excluded."""
    target: Optional[str]


@dataclass(frozen=True)
class ListNode:
    """Fallback list: the first entry yielding a result wins."""
    items: Tuple["ExportsNode", ...]


@dataclass(frozen=True)
class Conditional:
    """Condition name -> node, in manifest insertion order."""
    mapping: Tuple[Tuple[str, "ExportsNode"], ...]

    def get(self, condition: str) -> Optional["ExportsNode"]:
        for key, node in self.mapping:
            if key == condition:
                return node
        return None


@dataclass(frozen=True)
class SubpathMap:
    """Top-level ``{"./x": ...}`` form, keys may hold one ``*`` pattern."""
    mapping: Tuple[Tuple[str, "ExportsNode"], ...]


ExportsNode = Union[Leaf, ListNode, Conditional, SubpathMap]


@dataclass(frozen=True)
class PackageManifest:
    """Parsed ``package.json`` fields the resolver relies on.

    ``raw`` keeps the full document so manifest-filter hooks can see and copy
    every field.
    """
    path: str
    name: Optional[str]
    main: Optional[str]
    exports: Optional[ExportsNode]
    type: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_module(self) -> bool:
        return self.type == "module"


@dataclass(frozen=True)
class ResolutionContext:
    """Per-call resolution input; owned by the caller."""
    base_directory: str
    extensions: Tuple[str, ...] = field(
        default_factory=lambda: tuple(Constants.DEFAULT_EXTENSIONS)
    )
    ignored_manifest_path: Optional[str] = None
    conditions: Tuple[str, ...] = field(
        default_factory=lambda: tuple(Constants.DEFAULT_CONDITIONS)
    )
    fallback_conditions: Tuple[str, ...] = field(
        default_factory=lambda: tuple(Constants.FALLBACK_CONDITIONS)
    )


@dataclass(frozen=True)
class ResolutionResult:
    """Resolved absolute real path and the module system it runs under."""
    resolved_path: str
    module_kind: ModuleKind

    @property
    def is_esm(self) -> bool:
        return self.module_kind is ModuleKind.ESM


class ResolutionError(Exception):
    """Raised when a specifier cannot be mapped to any file."""

    def __init__(self, specifier: str, base_directory: str, reason: Optional[str] = None):
        self.specifier = specifier
        self.base_directory = base_directory
        self.reason = reason
        message = f"Cannot find module '{specifier}' from '{base_directory}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExplicitExclusionError(ResolutionError):
    """Raised when a package's ``"exports"`` maps the subpath to ``null``."""

    def __init__(self, specifier: str, base_directory: str, package_root: str, subpath: str):
        self.package_root = package_root
        self.subpath = subpath
        super().__init__(
            specifier,
            base_directory,
            f"subpath '{subpath}' exists but is not exported by the package at '{package_root}'",
        )
