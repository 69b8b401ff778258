"""Compiler selection through an explicit precedence chain."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping
import logging
import posixpath
import shutil

from .catalog import PathCatalog, PathCatalogEntry
from .environment import RESPECTED_COMPILER_VARIABLES
from .errors import MissingDependency, ToolchainNotFound
from .platforms import PlatformIdentifier


logger = logging.getLogger(__name__)

TIER_OVERRIDE = "explicit override"
TIER_ENVIRONMENT = "environment"
TIER_CATALOG = "path catalog"

CXX_STANDARD = "-std=c++20"

# Matches the warning set of the wrapped library's own CMake build.
WARNING_FLAGS = (
    "-Wsign-compare",
    "-Wshadow",
    "-Wno-unused-parameter",
    "-Wno-unused-variable",
    "-Woverloaded-virtual",
    "-Wnon-virtual-dtor",
    "-Wno-missing-field-initializers",
    "-Wno-strict-aliasing",
    "-Wno-invalid-offsetof",
)

MSVC_FLAGS = ("-EHsc", "-std:c++20")

# C runtime selection under cl.exe: static (mt-static) or the shared DLL.
MSVC_STATIC_CRT = "-MT"
MSVC_SHARED_CRT = "-MD"


def compiler_family(binary: str) -> str:
    name = posixpath.basename(binary.replace("\\", "/")).lower()
    if name.endswith(".exe"):
        name = name[:-4]
    if name in {"cl", "clang-cl"}:
        return "msvc"
    if "clang" in name:
        return "clang"
    return "gcc"


def base_flags(platform: PlatformIdentifier, family: str, *, static_crt: bool = False) -> tuple[str, ...]:
    if family == "msvc":
        return (*MSVC_FLAGS, MSVC_STATIC_CRT if static_crt else MSVC_SHARED_CRT)
    flags = [CXX_STANDARD, *WARNING_FLAGS]
    if platform.os != "windows":
        flags.extend(["-include", "cstdint"])
    return tuple(flags)


@dataclass(frozen=True, slots=True)
class ResolvedToolchain:
    compiler_binary_path: str
    base_flags: tuple[str, ...]
    tier: str
    family: str
    system_include_paths: tuple[str, ...] = ()
    stdlib_include_paths: tuple[str, ...] = ()
    sysroot: str | None = None
    libc_library_paths: tuple[str, ...] = ()
    dependencies: tuple[PathCatalogEntry, ...] = ()


class ToolchainResolver:
    """Chooses the compiler binary for a platform.

    Tiers, highest first: the caller's explicit override, an allow-listed
    variable of the sanitized environment, then the catalog entry of the
    compiler dependency.  A tier that names a compiler which cannot be found
    aborts resolution instead of falling through to a lower tier.
    """

    def __init__(
        self,
        catalog: PathCatalog,
        environment: Mapping[str, str],
        *,
        override: str | None = None,
        compiler_dependency: str = "gcc",
        stdlib_dependency: str = "gcc",
        static_crt: bool = False,
    ) -> None:
        self._catalog = catalog
        self._environment = environment
        self._override = override.strip() if override and override.strip() else None
        self._compiler_dependency = compiler_dependency
        self._stdlib_dependency = stdlib_dependency
        self._static_crt = static_crt

    def _locate(self, value: str) -> str | None:
        if posixpath.isabs(value) or "/" in value:
            return value
        return shutil.which(value, path=self._environment.get("PATH"))

    def _select_binary(self, platform: PlatformIdentifier) -> tuple[str, str, PathCatalogEntry | None]:
        attempts: List[tuple[str, str]] = []

        if self._override is not None:
            located = self._locate(self._override)
            if located is None:
                attempts.append((TIER_OVERRIDE, f"'{self._override}' was not found on PATH"))
                raise ToolchainNotFound(str(platform), attempts)
            return located, TIER_OVERRIDE, None
        attempts.append((TIER_OVERRIDE, "not supplied"))

        for name in RESPECTED_COMPILER_VARIABLES:
            value = (self._environment.get(name) or "").strip()
            if not value:
                continue
            located = self._locate(value)
            if located is None:
                attempts.append((TIER_ENVIRONMENT, f"{name}='{value}' was not found on PATH"))
                raise ToolchainNotFound(str(platform), attempts)
            return located, f"{TIER_ENVIRONMENT} ({name})", None
        attempts.append((TIER_ENVIRONMENT, f"none of {', '.join(RESPECTED_COMPILER_VARIABLES)} is set"))

        entry = self._catalog.find(platform, self._compiler_dependency)
        if entry is None:
            attempts.append((TIER_CATALOG, f"no '{self._compiler_dependency}' entry ({', '.join(self._catalog.tiers())})"))
        elif entry.binary_path is None:
            attempts.append((TIER_CATALOG, f"'{self._compiler_dependency}' entry has no binary"))
        else:
            return entry.binary_path, TIER_CATALOG, entry
        raise ToolchainNotFound(str(platform), attempts)

    def resolve(self, platform: PlatformIdentifier) -> ResolvedToolchain:
        binary, tier, compiler_entry = self._select_binary(platform)
        family = compiler_family(binary)
        logger.info("Compiler for %s: %s (%s)", platform, binary, tier)

        libc = self._catalog.lookup(platform, platform.libc)
        dependencies: List[PathCatalogEntry] = [libc]
        if compiler_entry is not None:
            dependencies.append(compiler_entry)

        if compiler_entry is not None and compiler_entry.dependency_name == self._stdlib_dependency:
            stdlib: PathCatalogEntry | None = compiler_entry
        else:
            stdlib = self._catalog.find(platform, self._stdlib_dependency)
        if stdlib is None and tier == TIER_CATALOG:
            raise MissingDependency(self._stdlib_dependency, str(platform), self._catalog.tiers())
        if stdlib is not None and stdlib is not compiler_entry:
            dependencies.append(stdlib)

        return ResolvedToolchain(
            compiler_binary_path=binary,
            base_flags=base_flags(platform, family, static_crt=self._static_crt),
            tier=tier,
            family=family,
            system_include_paths=libc.header_paths,
            stdlib_include_paths=stdlib.header_paths if stdlib is not None else (),
            sysroot=libc.root,
            libc_library_paths=libc.library_paths,
            dependencies=tuple(dependencies),
        )


__all__ = [
    "CXX_STANDARD",
    "MSVC_SHARED_CRT",
    "MSVC_STATIC_CRT",
    "ResolvedToolchain",
    "TIER_CATALOG",
    "TIER_ENVIRONMENT",
    "TIER_OVERRIDE",
    "ToolchainResolver",
    "WARNING_FLAGS",
    "base_flags",
    "compiler_family",
]
