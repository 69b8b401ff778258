"""Ordered include search paths and their two renderings.

Order is a correctness property: libc headers first, then the compiler's
C++ standard library headers, then feature directories in canonical feature
order, then the wrapped library's own source directories.  A path that appears
twice keeps its first position; moving it later could let a library header
shadow a system one.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .errors import UnsupportedToolchain
from .features import GNU_DRIVERS, FeatureFlag, FeaturePlan
from .toolchain import ResolvedToolchain


SYSTEM = "system"
STDLIB = "stdlib"
LIBRARY = "library"
FEATURE = "feature"


def stable_dedup(paths: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    result: List[str] = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            result.append(path)
    return result


@dataclass(frozen=True, slots=True)
class IncludeSet:
    system: tuple[str, ...] = ()
    stdlib: tuple[str, ...] = ()
    library: tuple[str, ...] = ()
    features: tuple[tuple[FeatureFlag, tuple[str, ...]], ...] = ()

    def classified(self) -> List[tuple[str, str]]:
        """Every path once, in search order, tagged with the group it came from."""

        groups: List[tuple[str, Sequence[str]]] = [(SYSTEM, self.system), (STDLIB, self.stdlib)]
        groups.extend((FEATURE, paths) for _, paths in self.features)
        groups.append((LIBRARY, self.library))
        seen: set[str] = set()
        result: List[tuple[str, str]] = []
        for kind, paths in groups:
            for path in paths:
                if path not in seen:
                    seen.add(path)
                    result.append((path, kind))
        return result

    @property
    def ordered(self) -> tuple[str, ...]:
        return tuple(path for path, _ in self.classified())


class IncludePathAssembler:
    def __init__(self, library_include_dirs: Iterable[str] = ()) -> None:
        self._library_include_dirs = tuple(library_include_dirs)

    def assemble(self, toolchain: ResolvedToolchain, feature_plan: FeaturePlan) -> IncludeSet:
        return IncludeSet(
            system=toolchain.system_include_paths,
            stdlib=toolchain.stdlib_include_paths,
            library=self._library_include_dirs,
            features=feature_plan.include_contributions,
        )

    @staticmethod
    def compiler_arguments(include_set: IncludeSet, family: str = "gcc") -> List[str]:
        """``-isystem`` for libc and C++ standard headers, ``-I`` for everything else.

        ``cl.exe`` has no system include switch; every path becomes ``/I``.
        """

        if family == "msvc":
            return [f"/I{path}" for path in include_set.ordered]
        if family not in GNU_DRIVERS:
            raise UnsupportedToolchain(family, "no include path syntax")
        arguments: List[str] = []
        for path, kind in include_set.classified():
            if kind in (SYSTEM, STDLIB):
                arguments.extend(["-isystem", path])
            else:
                arguments.append(f"-I{path}")
        return arguments

    @staticmethod
    def binding_arguments(
        include_set: IncludeSet,
        toolchain: ResolvedToolchain,
        resource_dirs: Sequence[str] = (),
    ) -> List[str]:
        """Arguments for the binding generator's embedded clang.

        The libc root is handed over as ``--sysroot`` and its headers are only
        searched after everything else (``-idirafter``), so clang's own
        resource headers such as ``stddef.h`` are found first.
        """

        arguments: List[str] = []
        if toolchain.sysroot:
            arguments.append(f"--sysroot={toolchain.sysroot}")
        for path in toolchain.libc_library_paths:
            arguments.append(f"-B{path}")

        classified = include_set.classified()
        system_paths = [path for path, kind in classified if kind == SYSTEM]
        front = stable_dedup(
            [path for path, kind in classified if kind == STDLIB]
            + [path for path in resource_dirs if path not in system_paths]
        )
        for path in front:
            arguments.append(f"-I{path}")
        for path in system_paths:
            arguments.extend(["-idirafter", path])
        for path, kind in classified:
            if kind in (LIBRARY, FEATURE) and path not in front:
                arguments.append(f"-I{path}")
        return arguments


__all__ = ["IncludePathAssembler", "IncludeSet", "stable_dedup"]
