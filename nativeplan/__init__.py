"""Build-time resolver for native toolchain and binding-generator configuration."""

from .catalog import NixProbe, PathCatalog, PathCatalogEntry, Probe, StaticTable
from .cli import main
from .config import ResolutionRequest, ResolverConfig
from .environment import EnvironmentSanitizer, EnvironmentSnapshot, sanitize_environment
from .errors import (
    ConfigurationError,
    ConflictingFeatures,
    MissingDependency,
    PlanInconsistency,
    ResolutionError,
    ToolchainNotFound,
    UnknownFeature,
    UnsupportedFeature,
)
from .features import Define, FeatureFlag, FeatureLinkPlanner, FeaturePlan, LinkDirective, LinkMode
from .includes import IncludePathAssembler, IncludeSet, stable_dedup
from .plan import BindingGeneratorView, CompilationPlan, CompilerView
from .platforms import PlatformIdentifier
from .resolver import resolve_plan
from .toolchain import ResolvedToolchain, ToolchainResolver

__all__ = [
    "BindingGeneratorView",
    "CompilationPlan",
    "CompilerView",
    "ConfigurationError",
    "ConflictingFeatures",
    "Define",
    "EnvironmentSanitizer",
    "EnvironmentSnapshot",
    "FeatureFlag",
    "FeatureLinkPlanner",
    "FeaturePlan",
    "IncludePathAssembler",
    "IncludeSet",
    "LinkDirective",
    "LinkMode",
    "MissingDependency",
    "NixProbe",
    "PathCatalog",
    "PathCatalogEntry",
    "PlanInconsistency",
    "PlatformIdentifier",
    "Probe",
    "ResolutionError",
    "ResolutionRequest",
    "ResolvedToolchain",
    "ResolverConfig",
    "StaticTable",
    "ToolchainNotFound",
    "ToolchainResolver",
    "UnknownFeature",
    "UnsupportedFeature",
    "main",
    "resolve_plan",
    "sanitize_environment",
]
