"""Environment sanitization and the immutable snapshot threaded through resolution."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, MutableMapping
import logging
import os


logger = logging.getLogger(__name__)

# Variables that silently change which compiler runs, which flags it sees, or
# where it and the binding generator look for headers and libraries.
DENY_LIST = frozenset({
    "CC", "CXX", "CPP", "LD", "AR",
    "HOST_CC", "HOST_CXX", "TARGET_CC", "TARGET_CXX",
    "CFLAGS", "CXXFLAGS", "CPPFLAGS", "LDFLAGS",
    "HOST_CFLAGS", "HOST_CXXFLAGS", "TARGET_CFLAGS", "TARGET_CXXFLAGS",
    "CPATH", "C_INCLUDE_PATH", "CPLUS_INCLUDE_PATH", "OBJC_INCLUDE_PATH",
    "LIBRARY_PATH", "CXXSTDLIB", "SDKROOT",
    "CC_WRAPPER", "RUSTC_WRAPPER",
    "BINDGEN_EXTRA_CLANG_ARGS", "LIBCLANG_PATH", "LIBCLANG_STATIC_PATH",
    "LLVM_CONFIG_PATH", "LLVM_CONFIG",
})

# Target-suffixed variants such as CC_x86_64_unknown_linux_gnu.
DENY_PREFIXES = (
    "CC_", "CXX_", "CFLAGS_", "CXXFLAGS_", "CPPFLAGS_", "LDFLAGS_",
    "BINDGEN_EXTRA_CLANG_ARGS_",
)

# Compiler selection variables still honoured after sanitization.  Must stay
# disjoint from the deny-list.
RESPECTED_COMPILER_VARIABLES = ("NATIVEPLAN_CXX", "NATIVEPLAN_CC")


def is_denied(name: str) -> bool:
    if name in RESPECTED_COMPILER_VARIABLES:
        return False
    return name in DENY_LIST or name.startswith(DENY_PREFIXES)


@dataclass(frozen=True, slots=True, eq=False)
class EnvironmentSnapshot(Mapping[str, str]):
    """Read-only view of the environment as it stood right after sanitization."""

    variables: Mapping[str, str] = field(default_factory=dict)
    removed: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    def __getitem__(self, key: str) -> str:
        return self.variables[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.variables)

    def __len__(self) -> int:
        return len(self.variables)

    def compiler_selection(self) -> Dict[str, str]:
        """Allow-listed compiler variables present in the snapshot, in precedence order."""

        return {
            name: self.variables[name]
            for name in RESPECTED_COMPILER_VARIABLES
            if self.variables.get(name, "").strip()
        }

    def as_dict(self) -> Dict[str, str]:
        return dict(self.variables)


class EnvironmentSanitizer:
    """Strips compiler-affecting variables from the process environment once.

    The first :meth:`apply` removes every deny-listed name from ``environ``
    (``os.environ`` by default) and captures what is left.  Later calls hand
    back the same snapshot without touching the environment again.
    """

    def __init__(self, environ: MutableMapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._snapshot: EnvironmentSnapshot | None = None

    @property
    def applied(self) -> bool:
        return self._snapshot is not None

    def apply(self) -> EnvironmentSnapshot:
        if self._snapshot is not None:
            return self._snapshot

        removed = sorted(name for name in list(self._environ.keys()) if is_denied(name))
        for name in removed:
            self._environ.pop(name, None)
        if removed:
            logger.debug("Removed inherited variables: %s", ", ".join(removed))

        self._snapshot = EnvironmentSnapshot(variables=dict(self._environ), removed=tuple(removed))
        return self._snapshot


def sanitize_environment(environ: MutableMapping[str, str] | None = None) -> EnvironmentSnapshot:
    return EnvironmentSanitizer(environ).apply()


__all__ = [
    "DENY_LIST",
    "DENY_PREFIXES",
    "EnvironmentSanitizer",
    "EnvironmentSnapshot",
    "RESPECTED_COMPILER_VARIABLES",
    "is_denied",
    "sanitize_environment",
]
