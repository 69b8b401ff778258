"""The immutable compilation plan and its compiler and binding-generator views."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import shlex

from .catalog import PathCatalogEntry
from .errors import PlanInconsistency
from .features import Define, FeatureFlag, FeaturePlan, LinkDirective, LinkMode, link_arguments
from .includes import IncludePathAssembler, IncludeSet
from .platforms import PlatformIdentifier
from .toolchain import MSVC_SHARED_CRT, MSVC_STATIC_CRT, ResolvedToolchain


# Only ever set for the binding generator; the compiler must not see them.
BINDING_ENVIRONMENT_VARIABLES = (
    "BINDGEN_EXTRA_CLANG_ARGS",
    "LIBCLANG_PATH",
    "LIBCLANG_STATIC_PATH",
    "LLVM_CONFIG_PATH",
)

# Compiler dependencies whose binding-side counterparts must share a major version.
BINDING_COUNTERPARTS = {"clang": ("libclang", "llvm")}

SNAPPY_CXX_STANDARD = "-std=c++11"
SNAPPY_INCLUDE_DIRS = ("snappy", ".")


def _identities(entries: Iterable[PathCatalogEntry]) -> tuple[tuple[str, str | None], ...]:
    seen: Dict[str, str | None] = {}
    for entry in entries:
        seen.setdefault(entry.dependency_name, entry.version)
    return tuple(seen.items())


@dataclass(frozen=True, slots=True)
class CompilerView:
    binary: str
    arguments: tuple[str, ...]
    link_arguments: tuple[str, ...]
    dependencies: tuple[tuple[str, str | None], ...] = ()

    def command(self, sources: Sequence[str] = ()) -> List[str]:
        return [self.binary, *self.arguments, *sources, *self.link_arguments]

    def environment(self, base: Mapping[str, str]) -> Dict[str, str]:
        return {key: value for key, value in base.items() if key not in BINDING_ENVIRONMENT_VARIABLES}


@dataclass(frozen=True, slots=True)
class BindingGeneratorView:
    header: str | None
    arguments: tuple[str, ...]
    sysroot: str | None
    variables: tuple[tuple[str, str], ...] = ()
    dependencies: tuple[tuple[str, str | None], ...] = ()

    @property
    def extra_clang_args(self) -> str:
        return shlex.join(self.arguments)

    def environment(self, base: Mapping[str, str] | None = None) -> Dict[str, str]:
        merged = dict(base or {})
        merged.update(self.variables)
        return merged


def build_compiler_view(
    toolchain: ResolvedToolchain,
    feature_plan: FeaturePlan,
    include_set: IncludeSet,
    *,
    defines: Sequence[Define],
    link_directives: Sequence[LinkDirective],
    platform: PlatformIdentifier | None = None,
    target_flags: Sequence[str] = (),
) -> CompilerView:
    arguments: List[str] = [*toolchain.base_flags, *feature_plan.compile_flags, *target_flags]
    arguments.extend(define.flag() for define in defines)
    arguments.extend(IncludePathAssembler.compiler_arguments(include_set, toolchain.family))
    return CompilerView(
        binary=toolchain.compiler_binary_path,
        arguments=tuple(arguments),
        link_arguments=tuple(link_arguments(link_directives, platform, toolchain.family)),
        dependencies=_identities([*toolchain.dependencies, *feature_plan.dependencies]),
    )


def build_snappy_view(
    toolchain: ResolvedToolchain,
    platform: PlatformIdentifier,
    *,
    include_dirs: Sequence[str] = SNAPPY_INCLUDE_DIRS,
    static_crt: bool = False,
) -> CompilerView:
    """Compiler invocation for the bundled snappy sources.

    Snappy is built on its own with C++11 (``-EHsc`` and the CRT switch under
    ``cl.exe``) and needs to be told when the target is big-endian.
    """

    if toolchain.family == "msvc":
        arguments: List[str] = ["-EHsc", MSVC_STATIC_CRT if static_crt else MSVC_SHARED_CRT]
    else:
        arguments = [SNAPPY_CXX_STANDARD]
    defines = [Define("NDEBUG", "1")]
    if platform.big_endian:
        defines.append(Define("SNAPPY_IS_BIG_ENDIAN", "1"))
    arguments.extend(define.flag() for define in defines)
    include_set = IncludeSet(
        system=toolchain.system_include_paths,
        stdlib=toolchain.stdlib_include_paths,
        library=tuple(include_dirs),
    )
    arguments.extend(IncludePathAssembler.compiler_arguments(include_set, toolchain.family))
    return CompilerView(
        binary=toolchain.compiler_binary_path,
        arguments=tuple(arguments),
        link_arguments=(),
        dependencies=_identities(toolchain.dependencies),
    )


def build_binding_view(
    toolchain: ResolvedToolchain,
    feature_plan: FeaturePlan,
    include_set: IncludeSet,
    *,
    header: str | None,
    libclang: PathCatalogEntry,
    llvm: PathCatalogEntry | None = None,
) -> BindingGeneratorView:
    """Arguments and environment for the binding generator.

    libclang is loaded at run time unless the static binding mode is enabled,
    in which case its library directory is exported as the static search path.
    """

    arguments = IncludePathAssembler.binding_arguments(include_set, toolchain, libclang.header_paths)
    library_dir = libclang.library_paths[0] if libclang.library_paths else libclang.root or ""
    variables: List[tuple[str, str]] = []
    if feature_plan.binding_link_mode is LinkMode.STATIC:
        variables.append(("LIBCLANG_STATIC_PATH", library_dir))
    else:
        variables.append(("LIBCLANG_PATH", library_dir))
    if llvm is not None and llvm.binary_path:
        variables.append(("LLVM_CONFIG_PATH", llvm.binary_path))
    variables.append(("BINDGEN_EXTRA_CLANG_ARGS", shlex.join(arguments)))

    entries = [*toolchain.dependencies, libclang, *feature_plan.dependencies]
    if llvm is not None:
        entries.append(llvm)
    return BindingGeneratorView(
        header=header,
        arguments=tuple(arguments),
        sysroot=toolchain.sysroot,
        variables=tuple(variables),
        dependencies=_identities(entries),
    )


def _major(version: str | None) -> str | None:
    return version.split(".", 1)[0] if version else None


def check_consistency(compiler: CompilerView, binding: BindingGeneratorView) -> None:
    """Both views must agree on the identity of every dependency they share.

    A clang compiler and the binding generator's libclang or LLVM are
    different catalog entries for one toolchain; they must share a major
    version.
    """

    binding_versions = dict(binding.dependencies)
    for name, version in compiler.dependencies:
        if name in binding_versions and binding_versions[name] != version:
            raise PlanInconsistency(name, version, binding_versions[name])
        for counterpart in BINDING_COUNTERPARTS.get(name, ()):
            other = binding_versions.get(counterpart)
            if version and other and _major(version) != _major(other):
                raise PlanInconsistency(f"{name}/{counterpart}", version, other)


@dataclass(frozen=True, slots=True)
class CompilationPlan:
    platform: PlatformIdentifier
    toolchain: ResolvedToolchain
    features: tuple[FeatureFlag, ...]
    defines: tuple[Define, ...]
    include_paths: tuple[str, ...]
    link_directives: tuple[LinkDirective, ...]
    compile_flags: tuple[str, ...]
    compiler: CompilerView
    binding_generator: BindingGeneratorView
    snappy: CompilerView | None = None
    prebuilt: tuple[LinkDirective, ...] = ()

    @classmethod
    def assemble(
        cls,
        *,
        platform: PlatformIdentifier,
        toolchain: ResolvedToolchain,
        feature_plan: FeaturePlan,
        include_set: IncludeSet,
        defines: Sequence[Define],
        link_directives: Sequence[LinkDirective],
        compiler: CompilerView,
        binding_generator: BindingGeneratorView,
        target_flags: Sequence[str] = (),
        snappy: CompilerView | None = None,
        prebuilt: Sequence[LinkDirective] = (),
    ) -> "CompilationPlan":
        check_consistency(compiler, binding_generator)
        return cls(
            platform=platform,
            toolchain=toolchain,
            features=feature_plan.features,
            defines=tuple(defines),
            include_paths=include_set.ordered,
            link_directives=tuple(link_directives),
            compile_flags=(*feature_plan.compile_flags, *target_flags),
            compiler=compiler,
            binding_generator=binding_generator,
            snappy=snappy,
            prebuilt=tuple(prebuilt),
        )

    def compiler_command(self, sources: Sequence[str] = ()) -> List[str]:
        return self.compiler.command(sources)

    def cargo_directives(self) -> List[str]:
        lines: List[str] = []
        for directive in self.link_directives:
            lines.extend(directive.cargo_directives())
        return lines

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "platform": str(self.platform),
            "features": [str(flag) for flag in self.features],
            "toolchain": {
                "compiler": self.toolchain.compiler_binary_path,
                "family": self.toolchain.family,
                "tier": self.toolchain.tier,
                "base_flags": list(self.toolchain.base_flags),
                "sysroot": self.toolchain.sysroot,
            },
            "defines": [
                {"symbol": define.symbol, "value": define.value} for define in self.defines
            ],
            "compile_flags": list(self.compile_flags),
            "include_paths": list(self.include_paths),
            "link_directives": [
                {
                    "library": directive.library,
                    "mode": str(directive.mode),
                    "search_paths": list(directive.search_paths),
                }
                for directive in self.link_directives
            ],
            "prebuilt": [directive.library for directive in self.prebuilt],
            "compiler": {
                "binary": self.compiler.binary,
                "arguments": list(self.compiler.arguments),
                "link_arguments": list(self.compiler.link_arguments),
                "dependencies": dict(self.compiler.dependencies),
            },
            "binding_generator": {
                "header": self.binding_generator.header,
                "sysroot": self.binding_generator.sysroot,
                "arguments": list(self.binding_generator.arguments),
                "environment": dict(self.binding_generator.variables),
                "dependencies": dict(self.binding_generator.dependencies),
            },
            "snappy": None if self.snappy is None else {
                "binary": self.snappy.binary,
                "arguments": list(self.snappy.arguments),
            },
        }


__all__ = [
    "BINDING_COUNTERPARTS",
    "BINDING_ENVIRONMENT_VARIABLES",
    "BindingGeneratorView",
    "CompilationPlan",
    "CompilerView",
    "SNAPPY_INCLUDE_DIRS",
    "build_binding_view",
    "build_compiler_view",
    "build_snappy_view",
    "check_consistency",
]
