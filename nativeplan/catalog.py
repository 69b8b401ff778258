"""Path catalog: dependency name and platform to absolute filesystem paths.

Two sources feed the catalog.  A :class:`StaticTable` loaded from a
checked-in data file pins store paths per platform, and an optional
:class:`Probe` asks the host's package-provenance system (Nix) for the
current authoritative paths.  The probe wins when it answers; when it fails
the static table is used.  When neither knows a dependency the lookup fails.
"""
from __future__ import annotations

from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import json
import logging
import posixpath
import re
import subprocess

from .core.command_runner import CommandError, CommandRunner
from .core.config_loader import load_config_file, merge_mappings, normalize_string_list, reject_unknown_keys
from .errors import ConfigurationError, MissingDependency
from .platforms import PlatformIdentifier


logger = logging.getLogger(__name__)

BUILTIN_CATALOG = "catalog.yaml"

STATIC_TIER = "static table"

# Where a layout's `libraries` live: below the package root, or below the
# library output of a package whose outputs are split (`zstd.dev` vs `zstd.out`).
LIBRARY_OUTPUTS = ("root", "lib")

_PLACEHOLDER = re.compile(r"\{(version|major)\}")


@dataclass(frozen=True, slots=True)
class PathCatalogEntry:
    dependency_name: str
    header_paths: tuple[str, ...] = ()
    library_paths: tuple[str, ...] = ()
    binary_path: str | None = None
    version: str | None = None
    root: str | None = None
    source: str = STATIC_TIER

    @property
    def identity(self) -> tuple[str, str | None]:
        return (self.dependency_name, self.version)


def _expand(template: str, root: str | None, version: str | None) -> str:
    """Substitute ``{version}``/``{major}`` and anchor relative paths at ``root``.

    Other brace sequences are kept verbatim.
    """

    def _substitute(match: re.Match[str]) -> str:
        if not version:
            raise ValueError(f"Catalog path '{template}' uses {{{match.group(1)}}} but no version is known")
        return version if match.group(1) == "version" else version.split(".")[0]

    text = _PLACEHOLDER.sub(_substitute, template)
    if posixpath.isabs(text):
        return posixpath.normpath(text)
    if root is None:
        raise ValueError(f"Relative catalog path '{template}' requires a root")
    return posixpath.normpath(posixpath.join(root, text))


@dataclass(frozen=True, slots=True)
class PackageLayout:
    """Where a dependency keeps its headers, libraries and binary below its root.

    Paths may be absolute or relative to the root and may use the ``{version}``
    and ``{major}`` placeholders (``include/c++/{version}``).  With
    ``library_output: lib`` the ``libraries`` are relative to the package's
    library output instead, for packages whose headers and shared objects
    live in different store paths.
    """

    name: str
    attribute: str | None = None
    headers: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    binary: str | None = None
    library_output: str = "root"

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "PackageLayout":
        if not isinstance(data, Mapping):
            raise TypeError(f"Catalog package '{name}' must be a mapping")
        reject_unknown_keys(
            data,
            {"attribute", "headers", "libraries", "binary", "library_output"},
            label=f"Catalog package '{name}'",
        )
        attribute = data.get("attribute")
        binary = data.get("binary")
        library_output = str(data.get("library_output", "root"))
        if library_output not in LIBRARY_OUTPUTS:
            raise ValueError(
                f"packages.{name}.library_output must be one of: {', '.join(LIBRARY_OUTPUTS)}"
            )
        return cls(
            name=name,
            attribute=str(attribute) if attribute else None,
            headers=tuple(normalize_string_list(data.get("headers"), field_name=f"packages.{name}.headers")),
            libraries=tuple(normalize_string_list(data.get("libraries"), field_name=f"packages.{name}.libraries")),
            binary=str(binary) if binary else None,
            library_output=library_output,
        )

    def materialize(
        self,
        *,
        root: str | None,
        version: str | None,
        source: str,
        headers: Sequence[str] | None = None,
        libraries: Sequence[str] | None = None,
        binary: str | None = None,
        library_root: str | None = None,
    ) -> PathCatalogEntry:
        header_templates = self.headers if headers is None else tuple(headers)
        library_templates = self.libraries if libraries is None else tuple(libraries)
        binary_template = binary if binary is not None else self.binary
        library_base = library_root or root
        return PathCatalogEntry(
            dependency_name=self.name,
            header_paths=tuple(_expand(item, root, version) for item in header_templates),
            library_paths=tuple(_expand(item, library_base, version) for item in library_templates),
            binary_path=_expand(binary_template, root, version) if binary_template else None,
            version=version,
            root=root,
            source=source,
        )


@dataclass(frozen=True, slots=True)
class PinnedEntry:
    root: str | None
    version: str | None
    headers: tuple[str, ...] | None = None
    libraries: tuple[str, ...] | None = None
    binary: str | None = None

    @classmethod
    def from_mapping(cls, label: str, data: Mapping[str, Any]) -> "PinnedEntry":
        if not isinstance(data, Mapping):
            raise TypeError(f"Catalog entry '{label}' must be a mapping")
        reject_unknown_keys(data, {"root", "version", "headers", "libraries", "binary"}, label=f"Catalog entry '{label}'")
        root = data.get("root")
        if root is not None and not posixpath.isabs(str(root)):
            raise ValueError(f"Catalog entry '{label}' root must be absolute: {root}")
        version = data.get("version")
        headers = data.get("headers")
        libraries = data.get("libraries")
        binary = data.get("binary")
        return cls(
            root=str(root) if root is not None else None,
            version=str(version) if version is not None else None,
            headers=tuple(normalize_string_list(headers, field_name=f"{label}.headers")) if headers is not None else None,
            libraries=tuple(normalize_string_list(libraries, field_name=f"{label}.libraries")) if libraries is not None else None,
            binary=str(binary) if binary else None,
        )


class StaticTable:
    """Pinned catalog rows, keyed by platform text and dependency name."""

    def __init__(
        self,
        layouts: Mapping[str, PackageLayout],
        rows: Mapping[str, Mapping[str, PinnedEntry]],
    ) -> None:
        self._layouts: Dict[str, PackageLayout] = dict(layouts)
        self._rows: Dict[str, Dict[str, PinnedEntry]] = {key: dict(value) for key, value in rows.items()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StaticTable":
        layouts: Dict[str, PackageLayout] = {}
        packages = data.get("packages") or {}
        if not isinstance(packages, Mapping):
            raise TypeError("Catalog 'packages' section must be a mapping")
        for raw_name, raw_layout in packages.items():
            name = str(raw_name).strip()
            layouts[name] = PackageLayout.from_mapping(name, raw_layout or {})

        rows: Dict[str, Dict[str, PinnedEntry]] = {}
        platforms = data.get("platforms") or {}
        if not isinstance(platforms, Mapping):
            raise TypeError("Catalog 'platforms' section must be a mapping")
        for raw_platform, raw_row in platforms.items():
            key = str(PlatformIdentifier.parse(str(raw_platform)))
            if not isinstance(raw_row, Mapping):
                raise TypeError(f"Catalog platform '{raw_platform}' must be a mapping")
            row: Dict[str, PinnedEntry] = {}
            for raw_dependency, raw_entry in raw_row.items():
                dependency = str(raw_dependency).strip()
                if dependency not in layouts:
                    layouts[dependency] = PackageLayout(name=dependency)
                row[dependency] = PinnedEntry.from_mapping(f"{key}.{dependency}", raw_entry or {})
            rows[key] = row
        return cls(layouts, rows)

    @classmethod
    def from_files(
        cls,
        paths: Iterable[Path],
        *,
        overlays: Iterable[Mapping[str, Any]] = (),
        include_builtin: bool = True,
    ) -> "StaticTable":
        """Load the built-in table and deep-merge each file in ``paths`` over it.

        Inline ``overlays`` are merged last, after every file.
        """

        data: Dict[str, Any] = dict(load_builtin_catalog()) if include_builtin else {}
        for path in paths:
            try:
                overlay = load_config_file(path)
            except (OSError, ValueError, TypeError) as exc:
                raise ConfigurationError(f"Cannot read catalog file '{path}': {exc}") from exc
            data = merge_mappings(data, overlay)
        for overlay in overlays:
            data = merge_mappings(data, overlay)
        try:
            return cls.from_mapping(data)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid catalog: {exc}") from exc

    @classmethod
    def builtin(cls) -> "StaticTable":
        return cls.from_files(())

    @property
    def layouts(self) -> Mapping[str, PackageLayout]:
        return self._layouts

    def platforms(self) -> List[str]:
        return sorted(self._rows)

    def dependencies(self, platform: PlatformIdentifier) -> List[str]:
        return sorted(self._rows.get(str(platform), {}))

    def entry(self, platform: PlatformIdentifier, dependency: str) -> PathCatalogEntry | None:
        pinned = self._rows.get(str(platform), {}).get(dependency)
        if pinned is None:
            return None
        layout = self._layouts.get(dependency, PackageLayout(name=dependency))
        try:
            return layout.materialize(
                root=pinned.root,
                version=pinned.version,
                source=STATIC_TIER,
                headers=pinned.headers,
                libraries=pinned.libraries,
                binary=pinned.binary,
            )
        except ValueError as exc:
            raise ConfigurationError(f"Catalog entry '{platform}.{dependency}': {exc}") from exc


class Probe:
    """Optional live source of catalog entries.  May fail; never raises."""

    name = "probe"

    @property
    def available(self) -> bool:
        return True

    def probe(self, platform: PlatformIdentifier, dependency: str) -> PathCatalogEntry | None:
        raise NotImplementedError


class NixProbe(Probe):
    """Asks ``nix eval`` for the store path and version of a package attribute.

    Each (platform, dependency) pair is queried at most once.  If ``nix``
    cannot be executed at all the probe switches itself off for the rest of
    the run; a failed query for one attribute only affects that attribute.
    """

    name = "nix probe"

    def __init__(
        self,
        layouts: Mapping[str, PackageLayout],
        runner: CommandRunner,
        *,
        flake: str = "nixpkgs",
        environment: Mapping[str, str] | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._layouts = layouts
        self._runner = runner
        self._flake = flake
        self._environment = environment
        self._timeout = timeout
        self._available = True
        self._cache: Dict[tuple[str, str], PathCatalogEntry | None] = {}

    @property
    def available(self) -> bool:
        return self._available

    def command(self, system: str, attribute: str) -> List[str]:
        return [
            "nix",
            "--extra-experimental-features",
            "nix-command flakes",
            "eval",
            "--json",
            f"{self._flake}#legacyPackages.{system}.{attribute}",
            "--apply",
            "p: { path = p.outPath; lib = (p.lib or p.out or p).outPath; version = p.version or null; }",
        ]

    def probe(self, platform: PlatformIdentifier, dependency: str) -> PathCatalogEntry | None:
        key = (str(platform), dependency)
        if key in self._cache:
            return self._cache[key]
        if not self._available:
            return None
        layout = self._layouts.get(dependency)
        system = platform.nix_system
        if layout is None or layout.attribute is None or system is None:
            return None

        entry: PathCatalogEntry | None = None
        try:
            result = self._runner.run(
                self.command(system, layout.attribute),
                env=self._environment,
                timeout=self._timeout,
            )
            payload = json.loads(result.stdout)
            root = payload["path"]
            version = payload.get("version")
            if not isinstance(root, str) or not posixpath.isabs(root):
                raise ValueError(f"unexpected store path {root!r}")
            library_root = None
            if layout.library_output == "lib":
                library_root = payload.get("lib") or root
                if not isinstance(library_root, str) or not posixpath.isabs(library_root):
                    raise ValueError(f"unexpected library output {library_root!r}")
            entry = layout.materialize(
                root=root,
                version=str(version) if version is not None else None,
                source=self.name,
                library_root=library_root,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Nix probe unavailable, using the static catalog: %s", exc)
            self._available = False
        except (CommandError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Nix probe failed for '%s' (%s), using the static catalog: %s", dependency, layout.attribute, exc)

        self._cache[key] = entry
        return entry


class PathCatalog:
    """Two-tier lookup: live probe first, static table second."""

    def __init__(self, static: StaticTable, probe: Probe | None = None) -> None:
        self._static = static
        self._probe = probe

    @property
    def static(self) -> StaticTable:
        return self._static

    def tiers(self) -> List[str]:
        tiers = [self._probe.name] if self._probe is not None and self._probe.available else []
        tiers.append(STATIC_TIER)
        return tiers

    def find(self, platform: PlatformIdentifier, dependency: str) -> PathCatalogEntry | None:
        if self._probe is not None:
            entry = self._probe.probe(platform, dependency)
            if entry is not None:
                logger.debug("Catalog: %s for %s from %s", dependency, platform, entry.source)
                return entry
        entry = self._static.entry(platform, dependency)
        if entry is not None:
            logger.debug("Catalog: %s for %s from %s", dependency, platform, STATIC_TIER)
        return entry

    def lookup(self, platform: PlatformIdentifier, dependency: str) -> PathCatalogEntry:
        entry = self.find(platform, dependency)
        if entry is None:
            raise MissingDependency(dependency, str(platform), self.tiers())
        return entry

    def known(self, platform: PlatformIdentifier) -> List[str]:
        return self._static.dependencies(platform)


def load_builtin_catalog() -> Mapping[str, Any]:
    resource = resources.files("nativeplan.data").joinpath(BUILTIN_CATALOG)
    with resources.as_file(resource) as path:
        return load_config_file(Path(path))


__all__ = [
    "NixProbe",
    "PackageLayout",
    "PathCatalog",
    "PathCatalogEntry",
    "PinnedEntry",
    "Probe",
    "STATIC_TIER",
    "StaticTable",
    "load_builtin_catalog",
]
