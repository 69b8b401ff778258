"""Single-pass pipeline from a resolution request to a compilation plan."""
from __future__ import annotations

from typing import Dict, List, MutableMapping
import logging

from .catalog import NixProbe, PathCatalog, StaticTable
from .config import ResolutionRequest, default_header
from .core.command_runner import CommandRunner, SubprocessCommandRunner
from .environment import EnvironmentSanitizer, EnvironmentSnapshot
from .errors import MissingDependency
from .features import (
    FeatureFlag,
    FeatureLinkPlanner,
    LinkDirective,
    check_exclusivity,
    parse_target_features,
    platform_defines,
    platform_link_directives,
    prebuilt_link,
    rocksdb_link,
    target_feature_flags,
)
from .includes import IncludePathAssembler
from .plan import CompilationPlan, build_binding_view, build_compiler_view, build_snappy_view
from .platforms import PlatformIdentifier
from .toolchain import ToolchainResolver


logger = logging.getLogger(__name__)

LIBCLANG_DEPENDENCY = "libclang"
LLVM_DEPENDENCY = "llvm"
TARGET_FEATURE_VARIABLE = "CARGO_CFG_TARGET_FEATURE"


def build_catalog(
    request: ResolutionRequest,
    environment: EnvironmentSnapshot,
    runner: CommandRunner | None = None,
) -> PathCatalog:
    overlays = [request.catalog_overrides] if request.catalog_overrides else []
    static = StaticTable.from_files(request.catalog_files, overlays=overlays)
    probe = None
    if request.probe:
        probe = NixProbe(
            static.layouts,
            runner or SubprocessCommandRunner(),
            flake=request.flake,
            environment=environment.as_dict(),
        )
    return PathCatalog(static, probe)


def resolve_plan(
    request: ResolutionRequest,
    *,
    environ: MutableMapping[str, str] | None = None,
    sanitizer: EnvironmentSanitizer | None = None,
    catalog: PathCatalog | None = None,
    runner: CommandRunner | None = None,
) -> CompilationPlan:
    """Run sanitize, catalog, toolchain, features, includes and emit the plan.

    ``environ`` defaults to the process environment, which is sanitized in
    place.  A ``sanitizer`` that already ran is reused without mutating the
    environment a second time.  Prebuilt libraries (``ROCKSDB_LIB_DIR``,
    ``SNAPPY_LIB_DIR`` and their ``_STATIC``/``_COMPILE`` switches) and
    ``CARGO_CFG_TARGET_FEATURE`` are read from the sanitized snapshot.
    """

    snapshot = (sanitizer or EnvironmentSanitizer(environ)).apply()

    # Conflicts are configuration errors; report them before touching the catalog.
    check_exclusivity(request.features)

    platform = request.platform or PlatformIdentifier.detect()
    logger.debug("Resolving for platform %s", platform)
    if catalog is None:
        catalog = build_catalog(request, snapshot, runner)

    toolchain = ToolchainResolver(
        catalog,
        snapshot,
        override=request.override,
        compiler_dependency=request.compiler_dependency,
        stdlib_dependency=request.stdlib_dependency,
        static_crt=FeatureFlag.MT_STATIC in request.features,
    ).resolve(platform)

    rocksdb = rocksdb_link(platform, snapshot)
    rocksdb_links = (rocksdb,) if rocksdb is not None else ()
    prebuilt_libraries: List[LinkDirective] = list(rocksdb_links)
    prebuilt: Dict[FeatureFlag, LinkDirective] = {}
    if FeatureFlag.SNAPPY in request.features:
        snappy_link = prebuilt_link("SNAPPY", snapshot)
        if snappy_link is not None:
            prebuilt[FeatureFlag.SNAPPY] = snappy_link
            prebuilt_libraries.append(snappy_link)

    planner = FeatureLinkPlanner(catalog, platform, compiler_family=toolchain.family, prebuilt=prebuilt)
    feature_plan = planner.plan(request.features)

    include_set = IncludePathAssembler(request.library_include_dirs).assemble(toolchain, feature_plan)
    defines = (*platform_defines(platform), *feature_plan.defines)
    link_directives = (
        *rocksdb_links,
        *feature_plan.link_directives,
        *platform_link_directives(platform, request.cxx_stdlib),
    )
    target_features = request.target_features
    if target_features is None:
        target_features = parse_target_features(snapshot.get(TARGET_FEATURE_VARIABLE))
    target_flags = target_feature_flags(platform, target_features, toolchain.family)

    if feature_plan.binding_dependencies:
        libclang = feature_plan.binding_dependencies[0]
    else:
        try:
            libclang = catalog.lookup(platform, LIBCLANG_DEPENDENCY)
        except MissingDependency as exc:
            raise exc.for_feature("binding generator") from exc
    llvm = catalog.find(platform, LLVM_DEPENDENCY)

    compiler = build_compiler_view(
        toolchain,
        feature_plan,
        include_set,
        defines=defines,
        link_directives=link_directives,
        platform=platform,
        target_flags=target_flags,
    )
    binding = build_binding_view(
        toolchain,
        feature_plan,
        include_set,
        header=request.header or default_header(snapshot),
        libclang=libclang,
        llvm=llvm,
    )
    snappy = None
    if FeatureFlag.SNAPPY in feature_plan.features and FeatureFlag.SNAPPY not in prebuilt:
        snappy = build_snappy_view(toolchain, platform, static_crt=FeatureFlag.MT_STATIC in request.features)
    plan = CompilationPlan.assemble(
        platform=platform,
        toolchain=toolchain,
        feature_plan=feature_plan,
        include_set=include_set,
        defines=defines,
        link_directives=link_directives,
        compiler=compiler,
        binding_generator=binding,
        target_flags=target_flags,
        snappy=snappy,
        prebuilt=prebuilt_libraries,
    )
    logger.info(
        "Plan for %s: %d defines, %d include paths, %d link directives",
        platform,
        len(plan.defines),
        len(plan.include_paths),
        len(plan.link_directives),
    )
    return plan


__all__ = ["build_catalog", "resolve_plan"]
