"""Node.js module resolution (CommonJS lookup and package "exports")."""

from .manifest_cache import ManifestCache
from .models import (
    Conditional,
    ExplicitExclusionError,
    ExportsNode,
    Leaf,
    ListNode,
    PackageManifest,
    ResolutionContext,
    ResolutionError,
    ResolutionResult,
    SubpathMap,
)
from .resolver import ModuleResolver, is_builtin

__all__ = [
    "Conditional",
    "ExplicitExclusionError",
    "ExportsNode",
    "Leaf",
    "ListNode",
    "ManifestCache",
    "ModuleResolver",
    "PackageManifest",
    "ResolutionContext",
    "ResolutionError",
    "ResolutionResult",
    "SubpathMap",
    "is_builtin",
]
