"""Module resolver supporting CommonJS lookup and package.json "exports".

Resolution is an ordered fallback chain; every step returns a path or
``None`` and only the public ``resolve`` turns a final miss into a
``ResolutionError``:

1. relative and absolute specifiers: file lookup, then directory lookup;
2. bare specifiers: locate the package root through ``node_modules``,
   evaluate ``"exports"`` with the active conditions, then the fallback
   conditions, then the legacy ``"main"``/``index`` lookup;
3. classic ``node_modules`` walking for packages without a manifest.

An explicit ``null`` in ``"exports"`` raises ``ExplicitExclusionError`` and
never falls through to the legacy lookup.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import stat
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from common.logging_utils import Timer, extra_context, is_debug_enabled
from common.paths import to_normalized_real_path
from constants import Constants
from resolution.exports import evaluate_exports
from resolution.manifest_cache import ManifestCache, build_manifest
from resolution.models import (
    ExplicitExclusionError,
    PackageManifest,
    ResolutionContext,
    ResolutionError,
    ResolutionResult,
)

logger = logging.getLogger(__name__)

ReadFileHook = Callable[[str], None]
ManifestFilterHook = Callable[[Dict[str, Any], str, str], None]

# npm historically accepted mixed-case names (JSONStream), so case is not enforced.
_PACKAGE_NAME = re.compile(r"^(?:@[A-Za-z0-9~][A-Za-z0-9._~-]*/)?[A-Za-z0-9~][A-Za-z0-9._~-]*$")
_DRIVE_PATH = re.compile(r"^[A-Za-z]:[\\/]")


def is_builtin(specifier: str) -> bool:
    """Return True for Node.js core modules (``fs``, ``node:fs``...)."""
    if specifier.startswith("node:"):
        return True
    return specifier in Constants.NODE_BUILTIN_MODULES


def is_path_specifier(specifier: str) -> bool:
    """Return True for relative and absolute specifiers."""
    return (
        specifier.startswith(".")
        or specifier.startswith("/")
        or specifier.startswith("\\")
        or bool(_DRIVE_PATH.match(specifier))
    )


def split_package_specifier(specifier: str) -> Optional[Tuple[str, str]]:
    """Split a bare specifier into ``(package_name, subpath)``.

    The subpath is ``"."`` for the package root and ``"./x"`` otherwise.
    Returns ``None`` when the specifier does not look like a package name.
    """
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2:
            return None
        name = f"{parts[0]}/{parts[1]}"
        rest = parts[2:]
    else:
        name = parts[0]
        rest = parts[1:]

    if not _PACKAGE_NAME.match(name):
        return None

    sub = "/".join(rest)
    return name, (f"./{sub}" if sub else ".")


def _node_modules_paths(start: str) -> Iterator[str]:
    current = os.path.abspath(start)
    while True:
        if os.path.basename(current) != Constants.NODE_MODULES:
            yield os.path.join(current, Constants.NODE_MODULES)
        parent = os.path.dirname(current)
        if parent == current:
            return
        current = parent


class ModuleResolver:
    """Resolves specifiers to files for one packaging run.

    The resolver owns (or shares) a ``ManifestCache``; two resolvers built on
    separate caches never see each other's manifests.
    """

    def __init__(
        self,
        cache: Optional[ManifestCache] = None,
        on_read_file: Optional[ReadFileHook] = None,
        on_manifest_filter: Optional[ManifestFilterHook] = None,
    ):
        """Initialize the resolver.

        Args:
            cache: Manifest cache for this run; a fresh one when omitted.
            on_read_file: Called with every manifest path consulted on disk.
            on_manifest_filter: Called with ``(manifest_copy, manifest_path,
                package_dir)`` for every package manifest used. The copy
                carries a synthetic ``"main"`` when the package entry was
                found only through ``"exports"``.
        """
        self.cache = cache if cache is not None else ManifestCache()
        self.on_read_file = on_read_file
        self.on_manifest_filter = on_manifest_filter

    def reset(self) -> None:
        """Forget every cached manifest."""
        self.cache.reset()

    # Filesystem checks

    @staticmethod
    def _proof_file(context: ResolutionContext) -> Optional[str]:
        if not context.ignored_manifest_path:
            return None
        return os.path.join(
            os.path.dirname(os.path.abspath(context.ignored_manifest_path)),
            Constants.PROOF_FILE,
        )

    def _is_file(self, path: str, context: ResolutionContext) -> bool:
        if path == self._proof_file(context):
            return True
        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as exc:
            logger.debug("Cannot stat %s: %s", path, exc)
            return False
        return stat.S_ISREG(st.st_mode) or stat.S_ISFIFO(st.st_mode)

    @staticmethod
    def _is_directory(path: str) -> bool:
        return os.path.isdir(path)

    def _load_manifest(
        self, manifest_path: str, context: ResolutionContext
    ) -> Optional[PackageManifest]:
        if context.ignored_manifest_path and os.path.abspath(manifest_path) == os.path.abspath(
            context.ignored_manifest_path
        ):
            return build_manifest(os.path.abspath(manifest_path), {"main": Constants.PROOF_FILE})

        if not os.path.isfile(manifest_path):
            return None
        if self.on_read_file is not None:
            self.on_read_file(manifest_path)
        return self.cache.load_manifest(manifest_path)

    def _notify_manifest(
        self, manifest: PackageManifest, package_dir: str, synthetic_main: Optional[str] = None
    ) -> None:
        if self.on_manifest_filter is None:
            return
        config = dict(manifest.raw)
        if synthetic_main is not None and not manifest.main:
            config["main"] = synthetic_main
        self.on_manifest_filter(config, manifest.path, package_dir)

    # File and directory lookup

    def _load_as_file(self, path: str, context: ResolutionContext) -> Optional[str]:
        if self._is_file(path, context):
            return path
        for ext in context.extensions:
            candidate = path + ext
            if self._is_file(candidate, context):
                return candidate
        return None

    def _load_index(self, directory: str, context: ResolutionContext) -> Optional[str]:
        for ext in context.extensions:
            candidate = os.path.join(directory, "index" + ext)
            if self._is_file(candidate, context):
                return candidate
        return None

    def _load_as_directory(
        self, directory: str, context: ResolutionContext, notify: bool = True
    ) -> Optional[str]:
        manifest = self._load_manifest(
            os.path.join(directory, Constants.PACKAGE_JSON_FILE), context
        )
        if manifest is not None:
            if notify:
                self._notify_manifest(manifest, directory)
            if manifest.main:
                main_path = os.path.normpath(os.path.join(directory, manifest.main))
                if main_path != os.path.normpath(directory):
                    found = self._load_as_file(main_path, context) or self._load_index(
                        main_path, context
                    )
                    if found:
                        return found
                    logger.debug(
                        "\"main\" of %s points at missing %s; trying index",
                        manifest.path,
                        main_path,
                    )
        return self._load_index(directory, context)

    def _load_path(self, path: str, context: ResolutionContext, directory_only: bool) -> Optional[str]:
        if not directory_only:
            found = self._load_as_file(path, context)
            if found:
                return found
        return self._load_as_directory(path, context)

    # Resolution steps

    def _resolve_path(self, specifier: str, context: ResolutionContext) -> Optional[str]:
        path = os.path.normpath(os.path.join(context.base_directory, specifier))
        directory_only = specifier in (".", "..") or specifier.endswith(("/", "\\"))
        return self._load_path(path, context, directory_only)

    def _find_package_root(
        self, name: str, context: ResolutionContext
    ) -> Optional[Tuple[str, Optional[PackageManifest]]]:
        for node_modules in _node_modules_paths(context.base_directory):
            candidate = os.path.join(node_modules, name, Constants.PACKAGE_JSON_FILE)
            ignored = context.ignored_manifest_path and os.path.abspath(candidate) == os.path.abspath(
                context.ignored_manifest_path
            )
            if ignored or os.path.isfile(candidate):
                root = os.path.dirname(candidate)
                if not ignored:
                    root = to_normalized_real_path(root)
                manifest = self._load_manifest(os.path.join(root, Constants.PACKAGE_JSON_FILE), context)
                return root, manifest
        return None

    def _condition_sets(self, context: ResolutionContext) -> List[Sequence[str]]:
        sets: List[Sequence[str]] = []
        for conditions in (context.conditions, context.fallback_conditions):
            if conditions and conditions not in sets:
                sets.append(conditions)
        return sets

    def _resolve_exports(
        self,
        specifier: str,
        subpath: str,
        root: str,
        manifest: PackageManifest,
        context: ResolutionContext,
    ) -> Optional[str]:
        excluded = False
        for conditions in self._condition_sets(context):
            leaf = evaluate_exports(manifest.exports, subpath, conditions)  # type: ignore[arg-type]
            if leaf is None:
                continue
            if leaf.target is None:
                excluded = True
                continue
            full_path = os.path.normpath(os.path.join(root, leaf.target))
            if self._is_file(full_path, context):
                if is_debug_enabled(logger):
                    logger.debug(
                        "Resolved through \"exports\"",
                        extra=extra_context(
                            event="decision",
                            component="resolver",
                            action="exports",
                            specifier=specifier,
                            target=full_path,
                            conditions=",".join(conditions),
                        ),
                    )
                self._notify_manifest(
                    manifest, root, synthetic_main=leaf.target if subpath == "." else None
                )
                return full_path
            logger.debug("\"exports\" target %s of %s does not exist", full_path, specifier)

        if excluded:
            raise ExplicitExclusionError(specifier, context.base_directory, root, subpath)
        return None

    def _resolve_node_modules(self, specifier: str, context: ResolutionContext) -> Optional[str]:
        directory_only = specifier.endswith("/")
        for node_modules in _node_modules_paths(context.base_directory):
            if not self._is_directory(node_modules):
                continue
            found = self._load_path(os.path.join(node_modules, specifier), context, directory_only)
            if found:
                return found
        return None

    def _resolve_bare(self, specifier: str, context: ResolutionContext) -> Optional[str]:
        parsed = split_package_specifier(specifier)
        if parsed is None:
            logger.debug("'%s' is not a valid package name", specifier)
            return None
        name, subpath = parsed

        located = self._find_package_root(name, context)
        if located is not None:
            root, manifest = located
            if manifest is not None:
                if manifest.exports is not None:
                    found = self._resolve_exports(specifier, subpath, root, manifest, context)
                    if found:
                        return found
                self._notify_manifest(manifest, root)

            if subpath == ".":
                found = self._load_as_directory(root, context, notify=False)
            else:
                found = self._load_path(
                    os.path.join(root, subpath[2:]), context, subpath.endswith("/")
                )
            return found

        # no package.json anywhere: classic node_modules lookup
        return self._resolve_node_modules(specifier, context)

    def resolve(self, specifier: str, context: ResolutionContext) -> ResolutionResult:
        """Resolve ``specifier`` from ``context.base_directory``.

        Raises:
            ExplicitExclusionError: The package's ``"exports"`` maps the
                subpath to ``null``.
            ResolutionError: No candidate file exists.
        """
        with Timer() as t:
            if is_builtin(specifier):
                raise ResolutionError(
                    specifier, context.base_directory, "built-in modules have no file to embed"
                )

            if is_path_specifier(specifier):
                found = self._resolve_path(specifier, context)
            else:
                found = self._resolve_bare(specifier, context)

            if found is None:
                raise ResolutionError(specifier, context.base_directory)

            resolved = to_normalized_real_path(found)
            result = ResolutionResult(resolved, self.cache.module_kind_of(resolved))

        if is_debug_enabled(logger):
            logger.debug(
                "Resolved module",
                extra=extra_context(
                    event="resolve",
                    component="resolver",
                    specifier=specifier,
                    target=resolved,
                    module_kind=result.module_kind.value,
                    duration_ms=t.duration_ms(),
                ),
            )
        return result

    async def resolve_async(self, specifier: str, context: ResolutionContext) -> ResolutionResult:
        """Run ``resolve`` on a worker thread."""
        return await asyncio.to_thread(self.resolve, specifier, context)
