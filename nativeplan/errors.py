"""Errors raised while resolving a compilation plan.

Every error here is fatal for the run.  Messages are meant to be read by a
person who needs to add a catalog entry, pass an override, or change the
enabled feature set, so they name the tier or feature involved.
"""
from __future__ import annotations

from typing import Iterable, Sequence


class ResolutionError(RuntimeError):
    """Base class for resolver failures."""


class ConfigurationError(ResolutionError):
    """A configuration or catalog file could not be used."""


class ToolchainNotFound(ResolutionError):
    def __init__(self, platform: str, attempts: Sequence[tuple[str, str]]) -> None:
        self.platform = platform
        self.attempts = tuple(attempts)
        lines = [f"No compiler could be resolved for platform '{platform}'. Tiers attempted:"]
        for tier, reason in self.attempts:
            lines.append(f"  - {tier}: {reason}")
        lines.append("Pass an explicit compiler or add a 'binary' to the compiler's catalog entry.")
        super().__init__("\n".join(lines))


class MissingDependency(ResolutionError):
    def __init__(
        self,
        dependency: str,
        platform: str,
        tiers: Iterable[str],
        *,
        feature: str | None = None,
    ) -> None:
        self.dependency = dependency
        self.platform = platform
        self.tiers = tuple(tiers)
        self.feature = feature
        requested = f" (required by '{feature}')" if feature else ""
        searched = ", ".join(self.tiers) if self.tiers else "<none>"
        super().__init__(
            f"Dependency '{dependency}'{requested} has no catalog entry for platform "
            f"'{platform}' (searched: {searched})"
        )

    def for_feature(self, feature: str) -> "MissingDependency":
        return MissingDependency(self.dependency, self.platform, self.tiers, feature=feature)


class ConflictingFeatures(ResolutionError):
    def __init__(self, first: str, second: str) -> None:
        self.features = (first, second)
        super().__init__(f"Features '{first}' and '{second}' are mutually exclusive")


class UnsupportedFeature(ResolutionError):
    def __init__(self, feature: str, reason: str) -> None:
        self.feature = feature
        self.reason = reason
        super().__init__(f"Feature '{feature}' cannot be enabled: {reason}")


class UnsupportedToolchain(ResolutionError):
    def __init__(self, toolchain: str, reason: str) -> None:
        self.toolchain = toolchain
        self.reason = reason
        super().__init__(f"Toolchain '{toolchain}' cannot express this plan: {reason}")


class UnknownFeature(ResolutionError, ValueError):
    def __init__(self, name: str, known: Iterable[str]) -> None:
        self.name = name
        choices = ", ".join(known)
        super().__init__(f"Unknown feature '{name}'. Known features: {choices}")


class PlanInconsistency(ResolutionError):
    def __init__(self, dependency: str, compiler_version: str | None, binding_version: str | None) -> None:
        self.dependency = dependency
        self.compiler_version = compiler_version
        self.binding_version = binding_version
        super().__init__(
            f"Compiler and binding generator disagree on dependency '{dependency}': "
            f"compiler uses version {compiler_version or '<unknown>'}, "
            f"binding generator uses {binding_version or '<unknown>'}"
        )


__all__ = [
    "ConfigurationError",
    "ConflictingFeatures",
    "MissingDependency",
    "PlanInconsistency",
    "ResolutionError",
    "ToolchainNotFound",
    "UnknownFeature",
    "UnsupportedFeature",
    "UnsupportedToolchain",
]
