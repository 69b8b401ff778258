"""Optional compile-time features and what each one contributes to a plan.

The feature set is closed: :class:`FeatureFlag` enumerates every toggle and
:data:`FEATURES` maps each one to its :class:`FeatureSpec`.  Declaration
order of the enum is the canonical order used for every output, so a plan
never depends on the order in which features were requested.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Dict, Iterable, List, Mapping
import logging
import posixpath

from .catalog import PathCatalog, PathCatalogEntry
from .errors import (
    ConflictingFeatures,
    MissingDependency,
    UnknownFeature,
    UnsupportedFeature,
    UnsupportedToolchain,
)
from .platforms import PlatformIdentifier


logger = logging.getLogger(__name__)

GNU_DRIVERS = frozenset({"gcc", "clang"})
APPLE_OS = frozenset({"darwin", "ios"})


class LinkMode(Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"

    def __str__(self) -> str:
        return self.value


class FeatureFlag(Enum):
    SNAPPY = "snappy"
    LZ4 = "lz4"
    ZSTD = "zstd"
    ZLIB = "zlib"
    BZIP2 = "bzip2"
    JEMALLOC = "jemalloc"
    IO_URING = "io-uring"
    RTTI = "rtti"
    LTO = "lto"
    MT_STATIC = "mt-static"
    BINDGEN_STATIC = "bindgen-static"
    BINDGEN_DYNAMIC = "bindgen-dynamic"

    def __str__(self) -> str:
        return self.value


CANONICAL_ORDER: Dict[FeatureFlag, int] = {flag: index for index, flag in enumerate(FeatureFlag)}


def canonical(features: Iterable[FeatureFlag]) -> tuple[FeatureFlag, ...]:
    return tuple(sorted(set(features), key=CANONICAL_ORDER.__getitem__))


@dataclass(frozen=True, slots=True)
class Define:
    symbol: str
    value: str | None = None

    def flag(self) -> str:
        if self.value is None:
            return f"-D{self.symbol}"
        return f"-D{self.symbol}={self.value}"


@dataclass(frozen=True, slots=True)
class LinkDirective:
    library: str
    mode: LinkMode = LinkMode.DYNAMIC
    search_paths: tuple[str, ...] = ()

    def compiler_flags(self, platform: PlatformIdentifier | None = None, family: str = "gcc") -> List[str]:
        """Flags for the compiler driver's link step.

        GNU-style drivers get ``-L``/``-l``.  A static link is wrapped in
        ``-Wl,-Bstatic``, except on Apple targets whose linker has no such
        switch and is handed the archive path instead.  ``cl.exe`` takes the
        bare ``<name>.lib``; its search paths belong after ``/link`` (see
        :meth:`linker_flags`).
        """

        if family == "msvc":
            return [f"{self.library}.lib"]
        if family not in GNU_DRIVERS:
            raise UnsupportedToolchain(family, f"no link syntax for '{self.library}'")
        flags = [f"-L{path}" for path in self.search_paths]
        if self.mode is LinkMode.DYNAMIC:
            flags.append(f"-l{self.library}")
        elif platform is not None and platform.os in APPLE_OS:
            if not self.search_paths:
                raise UnsupportedToolchain(
                    f"{family} on {platform}",
                    f"static '{self.library}' needs a library directory to name lib{self.library}.a",
                )
            flags.append(posixpath.join(self.search_paths[0], f"lib{self.library}.a"))
        else:
            flags.extend(["-Wl,-Bstatic", f"-l{self.library}", "-Wl,-Bdynamic"])
        return flags

    def linker_flags(self, family: str = "gcc") -> List[str]:
        if family == "msvc":
            return [f"/LIBPATH:{path}" for path in self.search_paths]
        return []

    def cargo_directives(self) -> List[str]:
        lines = [f"cargo:rustc-link-search=native={path}" for path in self.search_paths]
        kind = "static" if self.mode is LinkMode.STATIC else "dylib"
        lines.append(f"cargo:rustc-link-lib={kind}={self.library}")
        return lines


def link_arguments(
    directives: Iterable[LinkDirective],
    platform: PlatformIdentifier | None = None,
    family: str = "gcc",
) -> List[str]:
    """Render link directives for one compiler family, in directive order."""

    arguments: List[str] = []
    trailing: List[str] = []
    for directive in directives:
        arguments.extend(directive.compiler_flags(platform, family))
        trailing.extend(directive.linker_flags(family))
    if trailing:
        arguments.append("/link")
        arguments.extend(dict.fromkeys(trailing))
    return arguments


@dataclass(frozen=True, slots=True)
class FeatureSpec:
    description: str
    defines: tuple[Define, ...] = ()
    dependency: str | None = None
    link: tuple[str, LinkMode] | None = None
    exclusive_with: frozenset[FeatureFlag] = frozenset()
    compile_flags: tuple[str, ...] = ()
    requires_compiler: str | None = None
    only_os: frozenset[str] = frozenset()
    unsupported: frozenset[str] = frozenset()
    binding_link_mode: LinkMode | None = None

    @property
    def binding_only(self) -> bool:
        """The catalog entry is used by the binding generator, not the compiler."""

        return self.binding_link_mode is not None


FEATURES: Mapping[FeatureFlag, FeatureSpec] = {
    FeatureFlag.SNAPPY: FeatureSpec(
        description="Snappy compression (bundled, linked statically)",
        defines=(Define("SNAPPY", "1"),),
        dependency="snappy",
        link=("snappy", LinkMode.STATIC),
    ),
    FeatureFlag.LZ4: FeatureSpec(
        description="LZ4 compression",
        defines=(Define("LZ4", "1"),),
        dependency="lz4",
        link=("lz4", LinkMode.DYNAMIC),
    ),
    FeatureFlag.ZSTD: FeatureSpec(
        description="Zstandard compression",
        defines=(Define("ZSTD", "1"),),
        dependency="zstd",
        link=("zstd", LinkMode.DYNAMIC),
    ),
    FeatureFlag.ZLIB: FeatureSpec(
        description="zlib compression",
        defines=(Define("ZLIB", "1"),),
        dependency="zlib",
        link=("z", LinkMode.DYNAMIC),
    ),
    FeatureFlag.BZIP2: FeatureSpec(
        description="bzip2 compression",
        defines=(Define("BZIP2", "1"),),
        dependency="bzip2",
        link=("bz2", LinkMode.DYNAMIC),
    ),
    # Prefixed jemalloc builds on these targets cannot be linked with the library.
    FeatureFlag.JEMALLOC: FeatureSpec(
        description="jemalloc allocator",
        defines=(Define("ROCKSDB_JEMALLOC", "1"), Define("JEMALLOC_NO_DEMANGLE", "1")),
        dependency="jemalloc",
        link=("jemalloc", LinkMode.DYNAMIC),
        unsupported=frozenset({"android", "dragonfly", "musl", "darwin"}),
    ),
    FeatureFlag.IO_URING: FeatureSpec(
        description="io_uring backed file I/O",
        defines=(Define("ROCKSDB_IOURING_PRESENT", "1"),),
        dependency="liburing",
        link=("uring", LinkMode.DYNAMIC),
        only_os=frozenset({"linux"}),
    ),
    FeatureFlag.RTTI: FeatureSpec(
        description="Run-time type information",
        defines=(Define("USE_RTTI", "1"),),
    ),
    FeatureFlag.LTO: FeatureSpec(
        description="Link-time optimization",
        compile_flags=("-flto",),
        requires_compiler="clang",
    ),
    FeatureFlag.MT_STATIC: FeatureSpec(
        description="Static C runtime (-MT) under MSVC",
    ),
    FeatureFlag.BINDGEN_STATIC: FeatureSpec(
        description="Binding generator links libclang statically",
        dependency="libclang",
        exclusive_with=frozenset({FeatureFlag.BINDGEN_DYNAMIC}),
        binding_link_mode=LinkMode.STATIC,
    ),
    FeatureFlag.BINDGEN_DYNAMIC: FeatureSpec(
        description="Binding generator loads libclang at run time",
        dependency="libclang",
        exclusive_with=frozenset({FeatureFlag.BINDGEN_STATIC}),
        binding_link_mode=LinkMode.DYNAMIC,
    ),
}

_ALIASES = {
    "iouring": FeatureFlag.IO_URING,
    "uring": FeatureFlag.IO_URING,
    "bzip": FeatureFlag.BZIP2,
    "bindgen-runtime": FeatureFlag.BINDGEN_DYNAMIC,
    "bindgen-static-libclang": FeatureFlag.BINDGEN_STATIC,
}


def parse_feature(name: str) -> FeatureFlag:
    key = name.strip().lower().replace("_", "-")
    try:
        return FeatureFlag(key)
    except ValueError:
        pass
    flag = _ALIASES.get(key)
    if flag is None:
        raise UnknownFeature(name, (item.value for item in FeatureFlag))
    return flag


def parse_features(names: Iterable[str]) -> frozenset[FeatureFlag]:
    return frozenset(parse_feature(name) for name in names if name.strip())


def are_exclusive(first: FeatureFlag, second: FeatureFlag) -> bool:
    return second in FEATURES[first].exclusive_with or first in FEATURES[second].exclusive_with


def check_exclusivity(features: Iterable[FeatureFlag]) -> None:
    for first, second in combinations(canonical(features), 2):
        if are_exclusive(first, second):
            raise ConflictingFeatures(str(first), str(second))


def platform_defines(platform: PlatformIdentifier) -> tuple[Define, ...]:
    """Defines the wrapped library expects for the target platform."""

    posix = (Define("ROCKSDB_PLATFORM_POSIX"), Define("ROCKSDB_LIB_IO_POSIX"))
    defines: List[Define] = []
    os_name = platform.os
    if os_name == "ios":
        defines.extend([
            Define("OS_MACOSX"),
            Define("IOS_CROSS_COMPILE"),
            Define("PLATFORM", "IOS"),
            Define("NIOSTATS_CONTEXT"),
            Define("NPERF_CONTEXT"),
            *posix,
        ])
    elif os_name == "darwin":
        defines.extend([Define("OS_MACOSX"), *posix])
    elif os_name == "android":
        defines.extend([Define("OS_ANDROID"), *posix])
        if platform.arch == "armv7":
            defines.append(Define("_FILE_OFFSET_BITS", "32"))
    elif os_name == "aix":
        defines.extend([Define("OS_AIX"), *posix])
    elif os_name == "linux":
        defines.extend([Define("OS_LINUX"), *posix, Define("ROCKSDB_SCHED_GETCPU_PRESENT")])
    elif os_name in {"dragonfly", "freebsd", "netbsd", "openbsd"}:
        suffix = "DRAGONFLYBSD" if os_name == "dragonfly" else os_name.upper()
        defines.extend([Define(f"OS_{suffix}"), *posix])
    elif os_name == "windows":
        defines.extend([
            Define("DWIN32"),
            Define("OS_WIN"),
            Define("_MBCS"),
            Define("WIN64"),
            Define("NOMINMAX"),
            Define("ROCKSDB_WINDOWS_UTF8_FILENAMES"),
        ])
        if platform.libc == "mingw":
            defines.append(Define("_POSIX_C_SOURCE", "1"))
            defines.append(Define("_WIN32_WINNT", "_WIN32_WINNT_VISTA"))

    defines.append(Define("ROCKSDB_SUPPORT_THREAD_LOCAL"))
    if not (os_name == "android" and platform.arch == "armv7") and platform.pointer_width != 64:
        defines.append(Define("_FILE_OFFSET_BITS", "64"))
        defines.append(Define("_LARGEFILE64_SOURCE", "1"))
    defines.append(Define("NDEBUG", "1"))
    return tuple(defines)


def cpp_link_stdlib(platform: PlatformIdentifier, cxx_stdlib: str | None = None) -> tuple[LinkDirective, ...]:
    """The C++ standard library to link, named explicitly or chosen by platform."""

    if cxx_stdlib:
        return (LinkDirective(cxx_stdlib),)
    if platform.os in {"darwin", "ios", "freebsd", "openbsd"}:
        return (LinkDirective("c++"),)
    if platform.os == "aix":
        return (LinkDirective("c++"), LinkDirective("c++abi"))
    if platform.os in {"linux", "android"}:
        return (LinkDirective("stdc++"),)
    return ()


def platform_link_directives(platform: PlatformIdentifier, cxx_stdlib: str | None = None) -> tuple[LinkDirective, ...]:
    """System libraries the platform needs regardless of enabled features."""

    links: List[LinkDirective] = []
    if platform.os == "windows":
        links.extend([LinkDirective("rpcrt4"), LinkDirective("shlwapi")])
    links.extend(cpp_link_stdlib(platform, cxx_stdlib))
    if platform.arch == "riscv64":
        links.append(LinkDirective("atomic"))
    return tuple(links)


# x86_64 CPU features forwarded to the compiler.  sse4.2 enables hardware CRC32C.
TARGET_FEATURE_FLAGS = (
    ("sse2", "-msse2"),
    ("sse4.1", "-msse4.1"),
    ("sse4.2", "-msse4.2"),
    ("avx2", "-mavx2"),
    ("bmi1", "-mbmi"),
    ("lzcnt", "-mlzcnt"),
    ("pclmulqdq", "-mpclmul"),
)


def parse_target_features(value: str | None) -> frozenset[str]:
    """Split a ``CARGO_CFG_TARGET_FEATURE`` style comma list."""

    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def target_feature_flags(
    platform: PlatformIdentifier,
    target_features: Iterable[str],
    family: str = "gcc",
) -> tuple[str, ...]:
    if platform.arch != "x86_64" or family not in GNU_DRIVERS:
        return ()
    enabled = set(target_features)
    flags: List[str] = []
    for feature, flag in TARGET_FEATURE_FLAGS:
        if feature not in enabled:
            continue
        if feature == "pclmulqdq" and platform.os == "android":
            continue
        flags.append(flag)
    return tuple(flags)


FREEBSD_LIBRARY_DIR = "/usr/local/lib"


def _forced(value: str | None) -> bool:
    return value is not None and (value.lower() == "true" or value == "1")


def prebuilt_link(name: str, environment: Mapping[str, str]) -> LinkDirective | None:
    """Link directive for an already installed copy of ``name``, if one is configured.

    ``<NAME>_COMPILE=1`` (or ``true``) forces a source build.  Otherwise
    ``<NAME>_LIB_DIR`` names the directory holding the library and the
    presence of ``<NAME>_STATIC`` selects static linking.
    """

    key = name.upper()
    if _forced(environment.get(f"{key}_COMPILE")):
        return None
    lib_dir = environment.get(f"{key}_LIB_DIR")
    if not lib_dir:
        return None
    mode = LinkMode.STATIC if f"{key}_STATIC" in environment else LinkMode.DYNAMIC
    return LinkDirective(name.lower(), mode, (lib_dir,))


def rocksdb_link(platform: PlatformIdentifier, environment: Mapping[str, str]) -> LinkDirective | None:
    # FreeBSD only works against the system package.
    directive = prebuilt_link("ROCKSDB", environment)
    if directive is None and platform.os == "freebsd":
        mode = LinkMode.STATIC if "ROCKSDB_STATIC" in environment else LinkMode.DYNAMIC
        directive = LinkDirective("rocksdb", mode, (FREEBSD_LIBRARY_DIR,))
    return directive


@dataclass(frozen=True, slots=True)
class FeaturePlan:
    features: tuple[FeatureFlag, ...] = ()
    defines: tuple[Define, ...] = ()
    include_contributions: tuple[tuple[FeatureFlag, tuple[str, ...]], ...] = ()
    link_directives: tuple[LinkDirective, ...] = ()
    compile_flags: tuple[str, ...] = ()
    binding_link_mode: LinkMode | None = None
    dependencies: tuple[PathCatalogEntry, ...] = ()
    binding_dependencies: tuple[PathCatalogEntry, ...] = ()

    @property
    def include_paths(self) -> tuple[str, ...]:
        return tuple(path for _, paths in self.include_contributions for path in paths)

    @property
    def is_empty(self) -> bool:
        return not (self.defines or self.include_contributions or self.link_directives or self.compile_flags)


@dataclass(slots=True)
class _Accumulator:
    defines: List[Define] = field(default_factory=list)
    includes: List[tuple[FeatureFlag, tuple[str, ...]]] = field(default_factory=list)
    links: List[LinkDirective] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)
    dependencies: List[PathCatalogEntry] = field(default_factory=list)
    binding_dependencies: List[PathCatalogEntry] = field(default_factory=list)
    binding_link_mode: LinkMode | None = None


class FeatureLinkPlanner:
    """Folds the enabled features into defines, include paths and link directives."""

    def __init__(
        self,
        catalog: PathCatalog,
        platform: PlatformIdentifier,
        *,
        compiler_family: str | None = None,
        prebuilt: Mapping[FeatureFlag, LinkDirective] | None = None,
    ) -> None:
        self._catalog = catalog
        self._platform = platform
        self._compiler_family = compiler_family
        self._prebuilt = dict(prebuilt or {})

    def check_support(self, features: Iterable[FeatureFlag]) -> None:
        for flag in canonical(features):
            spec = FEATURES[flag]
            if spec.only_os and self._platform.os not in spec.only_os:
                supported = ", ".join(sorted(spec.only_os))
                raise UnsupportedFeature(str(flag), f"only available on {supported}, not {self._platform}")
            blocked = spec.unsupported & {self._platform.os, self._platform.libc}
            if blocked:
                raise UnsupportedFeature(str(flag), f"not supported on {', '.join(sorted(blocked))} targets")
            if spec.requires_compiler and self._compiler_family and spec.requires_compiler != self._compiler_family:
                raise UnsupportedFeature(
                    str(flag),
                    f"requires a {spec.requires_compiler} compiler, resolved compiler is {self._compiler_family}",
                )

    def plan(self, enabled: Iterable[FeatureFlag]) -> FeaturePlan:
        ordered = canonical(enabled)
        check_exclusivity(ordered)
        self.check_support(ordered)

        acc = _Accumulator()
        for flag in ordered:
            spec = FEATURES[flag]
            entry: PathCatalogEntry | None = None
            prebuilt = self._prebuilt.get(flag)
            if spec.dependency is not None and prebuilt is not None:
                entry = self._catalog.find(self._platform, spec.dependency)
            elif spec.dependency is not None:
                try:
                    entry = self._catalog.lookup(self._platform, spec.dependency)
                except MissingDependency as exc:
                    raise exc.for_feature(str(flag)) from exc

            acc.defines.extend(spec.defines)
            acc.flags.extend(spec.compile_flags)
            if spec.binding_only:
                acc.binding_link_mode = spec.binding_link_mode
                if entry is not None:
                    acc.binding_dependencies.append(entry)
                continue
            if entry is not None:
                acc.dependencies.append(entry)
                if entry.header_paths:
                    acc.includes.append((flag, entry.header_paths))
            if prebuilt is not None:
                acc.links.append(prebuilt)
            elif spec.link is not None:
                library, mode = spec.link
                search_paths = entry.library_paths if entry is not None else ()
                acc.links.append(LinkDirective(library, mode, search_paths))

        if ordered:
            logger.debug("Planned features: %s", ", ".join(str(flag) for flag in ordered))
        return FeaturePlan(
            features=ordered,
            defines=tuple(acc.defines),
            include_contributions=tuple(acc.includes),
            link_directives=tuple(acc.links),
            compile_flags=tuple(acc.flags),
            binding_link_mode=acc.binding_link_mode,
            dependencies=tuple(acc.dependencies),
            binding_dependencies=tuple(acc.binding_dependencies),
        )


__all__ = [
    "CANONICAL_ORDER",
    "Define",
    "FEATURES",
    "FREEBSD_LIBRARY_DIR",
    "FeatureFlag",
    "FeatureLinkPlanner",
    "FeaturePlan",
    "FeatureSpec",
    "GNU_DRIVERS",
    "LinkDirective",
    "LinkMode",
    "TARGET_FEATURE_FLAGS",
    "are_exclusive",
    "canonical",
    "check_exclusivity",
    "cpp_link_stdlib",
    "link_arguments",
    "parse_feature",
    "parse_features",
    "platform_defines",
    "parse_target_features",
    "platform_link_directives",
    "prebuilt_link",
    "rocksdb_link",
    "target_feature_flags",
]
