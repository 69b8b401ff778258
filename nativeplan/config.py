"""Resolver configuration files."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from .core.config_loader import load_config_file, normalize_string_list, reject_unknown_keys
from .errors import ConfigurationError
from .features import FeatureFlag, parse_features, parse_target_features
from .platforms import PlatformIdentifier


_RESOLVER_KEYS = {
    "features",
    "compiler",
    "platform",
    "target",
    "header",
    "include_dirs",
    "catalog",
    "probe",
    "flake",
    "log_level",
    "compiler_dependency",
    "stdlib_dependency",
    "target_features",
    "cxx_stdlib",
}

LOG_LEVELS = ("debug", "info", "warning", "error")

# Source-tree directories of the wrapped library, relative to the crate root.
DEFAULT_LIBRARY_INCLUDE_DIRS = ("rocksdb/include", "rocksdb", ".")
DEFAULT_INCLUDE_DIR = "rocksdb/include"


def default_header(environment: Mapping[str, str]) -> str:
    """The C API header handed to the binding generator.

    ``ROCKSDB_INCLUDE_DIR`` points at an installed include tree; otherwise the
    bundled sources are used.
    """

    include_dir = environment.get("ROCKSDB_INCLUDE_DIR") or DEFAULT_INCLUDE_DIR
    return f"{include_dir.rstrip('/')}/rocksdb/c.h"


def _resolve_path(value: str, base_dir: Path | None) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return str(path)


@dataclass(frozen=True, slots=True)
class ResolutionRequest:
    """Everything one resolver run needs besides the environment."""

    features: frozenset[FeatureFlag] = frozenset()
    override: str | None = None
    platform: PlatformIdentifier | None = None
    header: str | None = None
    library_include_dirs: tuple[str, ...] = DEFAULT_LIBRARY_INCLUDE_DIRS
    catalog_files: tuple[Path, ...] = ()
    catalog_overrides: Mapping[str, Any] | None = None
    probe: bool = True
    flake: str = "nixpkgs"
    compiler_dependency: str = "gcc"
    stdlib_dependency: str = "gcc"
    target_features: frozenset[str] | None = None
    cxx_stdlib: str | None = None


@dataclass(slots=True)
class ResolverConfig:
    features: List[str] = field(default_factory=list)
    compiler: str | None = None
    platform: str | None = None
    target: str | None = None
    header: str | None = None
    include_dirs: List[str] = field(default_factory=list)
    catalogs: List[str] = field(default_factory=list)
    probe: bool = True
    flake: str = "nixpkgs"
    log_level: str = "info"
    compiler_dependency: str = "gcc"
    stdlib_dependency: str = "gcc"
    target_features: List[str] | None = None
    cxx_stdlib: str | None = None
    catalog_overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "ResolverConfig":
        section = data.get("resolver", {}) if isinstance(data, Mapping) else {}
        if not isinstance(section, Mapping):
            raise TypeError("[resolver] section must be a mapping")
        reject_unknown_keys(section, _RESOLVER_KEYS, label="[resolver] section")

        log_level = str(section.get("log_level", "info")).lower()
        if log_level not in LOG_LEVELS:
            raise ValueError(f"resolver.log_level must be one of: {', '.join(LOG_LEVELS)}")

        probe = section.get("probe", True)
        if not isinstance(probe, bool):
            raise TypeError("resolver.probe must be a boolean")

        header = section.get("header")
        compiler = section.get("compiler")
        platform = section.get("platform")
        target = section.get("target")
        if platform and target:
            raise ValueError("resolver.platform and resolver.target are mutually exclusive")

        target_features = None
        if "target_features" in section:
            target_features = normalize_string_list(section["target_features"], field_name="resolver.target_features")
        cxx_stdlib = section.get("cxx_stdlib")

        catalog_section = data.get("catalog", {})
        if not isinstance(catalog_section, Mapping):
            raise TypeError("[catalog] section must be a mapping")

        return cls(
            features=normalize_string_list(section.get("features"), field_name="resolver.features"),
            compiler=str(compiler) if compiler else None,
            platform=str(platform) if platform else None,
            target=str(target) if target else None,
            header=_resolve_path(str(header), base_dir) if header else None,
            include_dirs=[
                _resolve_path(item, base_dir)
                for item in normalize_string_list(section.get("include_dirs"), field_name="resolver.include_dirs")
            ],
            catalogs=[
                _resolve_path(item, base_dir)
                for item in normalize_string_list(section.get("catalog"), field_name="resolver.catalog")
            ],
            probe=probe,
            flake=str(section.get("flake", "nixpkgs")),
            log_level=log_level,
            compiler_dependency=str(section.get("compiler_dependency", "gcc")),
            stdlib_dependency=str(section.get("stdlib_dependency", "gcc")),
            target_features=target_features,
            cxx_stdlib=str(cxx_stdlib) if cxx_stdlib else None,
            catalog_overrides=dict(catalog_section),
        )

    @classmethod
    def load(cls, path: Path) -> "ResolverConfig":
        try:
            data = load_config_file(path)
            return cls.from_mapping(data, base_dir=path.resolve().parent)
        except (OSError, ValueError, TypeError) as exc:
            raise ConfigurationError(f"Cannot load configuration '{path}': {exc}") from exc

    def resolve_platform(self) -> PlatformIdentifier | None:
        if self.platform:
            return PlatformIdentifier.parse(self.platform)
        if self.target:
            return PlatformIdentifier.from_target_triple(self.target)
        return None

    def to_request(
        self,
        *,
        extra_features: Iterable[str] = (),
        compiler: str | None = None,
        platform: PlatformIdentifier | None = None,
        probe: bool | None = None,
        extra_catalogs: Iterable[str] = (),
    ) -> ResolutionRequest:
        """Combine the file configuration with command line values, which take precedence."""

        try:
            selected_platform = platform or self.resolve_platform()
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        return ResolutionRequest(
            features=parse_features([*self.features, *extra_features]),
            override=compiler or self.compiler,
            platform=selected_platform,
            header=self.header,
            library_include_dirs=tuple(self.include_dirs) or DEFAULT_LIBRARY_INCLUDE_DIRS,
            catalog_files=tuple(Path(item) for item in [*self.catalogs, *extra_catalogs]),
            catalog_overrides=self.catalog_overrides or None,
            probe=self.probe if probe is None else probe,
            flake=self.flake,
            compiler_dependency=self.compiler_dependency,
            stdlib_dependency=self.stdlib_dependency,
            target_features=(
                parse_target_features(",".join(self.target_features)) if self.target_features is not None else None
            ),
            cxx_stdlib=self.cxx_stdlib,
        )


__all__ = [
    "DEFAULT_INCLUDE_DIR",
    "DEFAULT_LIBRARY_INCLUDE_DIRS",
    "LOG_LEVELS",
    "ResolutionRequest",
    "ResolverConfig",
    "default_header",
]
