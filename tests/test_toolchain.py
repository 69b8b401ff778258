from __future__ import annotations

from pathlib import Path
import os
import stat
import tempfile
import unittest

from nativeplan.catalog import PathCatalog, StaticTable
from nativeplan.environment import sanitize_environment
from nativeplan.errors import MissingDependency, ToolchainNotFound
from nativeplan.toolchain import (
    CXX_STANDARD,
    TIER_CATALOG,
    TIER_OVERRIDE,
    ToolchainResolver,
    base_flags,
    compiler_family,
)
from nativeplan.platforms import PlatformIdentifier

from tests.catalog_fixtures import (
    CLANG_ROOT,
    GCC_CXX_INCLUDE,
    GCC_ROOT,
    GLIBC_INCLUDE,
    GLIBC_ROOT,
    LINUX,
    counting_catalog,
    sample_catalog,
)


class CompilerFamilyTests(unittest.TestCase):
    def test_family_from_binary_name(self) -> None:
        self.assertEqual(compiler_family("/nix/store/x/bin/g++"), "gcc")
        self.assertEqual(compiler_family("/usr/bin/clang++-19"), "clang")
        self.assertEqual(compiler_family("C:\\LLVM\\bin\\clang-cl.exe"), "msvc")
        self.assertEqual(compiler_family("cl.exe"), "msvc")

    def test_base_flags(self) -> None:
        flags = base_flags(LINUX, "gcc")
        self.assertEqual(flags[0], CXX_STANDARD)
        self.assertIn("-Wshadow", flags)
        self.assertEqual(flags[-2:], ("-include", "cstdint"))
        windows = PlatformIdentifier.parse("windows-msvc-x86_64")
        self.assertEqual(base_flags(windows, "msvc"), ("-EHsc", "-std:c++20", "-MD"))
        self.assertEqual(base_flags(windows, "msvc", static_crt=True)[-1], "-MT")
        self.assertNotIn("-MT", base_flags(LINUX, "gcc", static_crt=True))
        self.assertNotIn("cstdint", base_flags(PlatformIdentifier.parse("windows-mingw-x86_64"), "gcc"))


class ToolchainResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.catalog = sample_catalog()

    def test_catalog_tier_when_nothing_else_is_set(self) -> None:
        toolchain = ToolchainResolver(self.catalog, sanitize_environment({})).resolve(LINUX)
        self.assertEqual(toolchain.compiler_binary_path, f"{GCC_ROOT}/bin/g++")
        self.assertEqual(toolchain.tier, TIER_CATALOG)
        self.assertEqual(toolchain.family, "gcc")
        self.assertEqual(toolchain.system_include_paths, (GLIBC_INCLUDE,))
        self.assertEqual(toolchain.stdlib_include_paths, (GCC_CXX_INCLUDE,))
        self.assertEqual(toolchain.sysroot, GLIBC_ROOT)
        self.assertEqual(toolchain.libc_library_paths, (f"{GLIBC_ROOT}/lib",))
        self.assertEqual([entry.dependency_name for entry in toolchain.dependencies], ["glibc", "gcc"])

    def test_catalog_compiler_is_recorded_as_a_dependency(self) -> None:
        toolchain = ToolchainResolver(self.catalog, sanitize_environment({}), compiler_dependency="clang").resolve(LINUX)
        self.assertEqual(toolchain.compiler_binary_path, f"{CLANG_ROOT}/bin/clang++")
        self.assertEqual(toolchain.family, "clang")
        self.assertEqual(
            [(entry.dependency_name, entry.version) for entry in toolchain.dependencies],
            [("glibc", "2.40-66"), ("clang", "19.1.7"), ("gcc", "14.3.0")],
        )

    def test_override_wins_over_environment_and_catalog(self) -> None:
        catalog = counting_catalog()
        environment = sanitize_environment({"NATIVEPLAN_CXX": "/usr/bin/g++"})
        toolchain = ToolchainResolver(
            catalog,
            environment,
            override="/opt/llvm/bin/clang++",
            compiler_dependency="clang",
        ).resolve(LINUX)
        self.assertEqual(toolchain.compiler_binary_path, "/opt/llvm/bin/clang++")
        self.assertEqual(toolchain.tier, TIER_OVERRIDE)
        self.assertEqual(toolchain.family, "clang")
        self.assertNotIn("clang", catalog.requested)
        self.assertEqual(toolchain.stdlib_include_paths, (GCC_CXX_INCLUDE,))

    def test_allow_listed_variable_wins_over_catalog(self) -> None:
        environment = sanitize_environment({"NATIVEPLAN_CXX": "/opt/gcc-13/bin/g++", "NATIVEPLAN_CC": "/opt/bin/cc"})
        toolchain = ToolchainResolver(self.catalog, environment).resolve(LINUX)
        self.assertEqual(toolchain.compiler_binary_path, "/opt/gcc-13/bin/g++")
        self.assertEqual(toolchain.tier, "environment (NATIVEPLAN_CXX)")

    def test_sanitized_variables_never_select_the_compiler(self) -> None:
        environment = sanitize_environment({"CXX": "/usr/bin/clang++", "CC": "/usr/bin/clang"})
        toolchain = ToolchainResolver(self.catalog, environment).resolve(LINUX)
        self.assertEqual(toolchain.tier, TIER_CATALOG)
        self.assertEqual(toolchain.family, "gcc")

    def test_bare_name_is_located_on_path(self) -> None:
        with tempfile.TemporaryDirectory() as temp:
            binary = Path(temp) / "my-g++"
            binary.write_text("#!/bin/sh\n")
            binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
            environment = sanitize_environment({"PATH": temp})
            toolchain = ToolchainResolver(self.catalog, environment, override="my-g++").resolve(LINUX)
        self.assertEqual(toolchain.compiler_binary_path, os.path.join(temp, "my-g++"))

    def test_unlocatable_override_fails_without_falling_through(self) -> None:
        environment = sanitize_environment({"PATH": ""})
        resolver = ToolchainResolver(self.catalog, environment, override="no-such-compiler")
        with self.assertRaises(ToolchainNotFound) as ctx:
            resolver.resolve(LINUX)
        self.assertEqual([tier for tier, _ in ctx.exception.attempts], [TIER_OVERRIDE])
        self.assertIn("no-such-compiler", str(ctx.exception))

    def test_unlocatable_environment_value_fails(self) -> None:
        environment = sanitize_environment({"PATH": "", "NATIVEPLAN_CXX": "ghost++"})
        with self.assertRaises(ToolchainNotFound) as ctx:
            ToolchainResolver(self.catalog, environment).resolve(LINUX)
        self.assertIn("NATIVEPLAN_CXX", str(ctx.exception))

    def test_every_tier_exhausted(self) -> None:
        table = StaticTable.from_mapping({
            "platforms": {"linux-glibc-x86_64": {"glibc": {"root": GLIBC_ROOT, "version": "2.40-66"}}},
        })
        with self.assertRaises(ToolchainNotFound) as ctx:
            ToolchainResolver(PathCatalog(table), sanitize_environment({})).resolve(LINUX)
        error = ctx.exception
        self.assertEqual(error.platform, "linux-glibc-x86_64")
        self.assertEqual(
            [tier for tier, _ in error.attempts],
            ["explicit override", "environment", "path catalog"],
        )
        self.assertIn("no 'gcc' entry", str(error))

    def test_compiler_entry_without_binary(self) -> None:
        table = StaticTable.from_mapping({
            "platforms": {
                "linux-glibc-x86_64": {
                    "glibc": {"root": GLIBC_ROOT},
                    "gcc": {"root": GCC_ROOT, "version": "14.3.0"},
                },
            },
        })
        with self.assertRaisesRegex(ToolchainNotFound, "has no binary"):
            ToolchainResolver(PathCatalog(table), sanitize_environment({})).resolve(LINUX)

    def test_missing_libc_is_reported(self) -> None:
        table = StaticTable.from_mapping({
            "packages": {"gcc": {"binary": "bin/g++"}},
            "platforms": {"linux-glibc-x86_64": {"gcc": {"root": GCC_ROOT}}},
        })
        with self.assertRaises(MissingDependency) as ctx:
            ToolchainResolver(PathCatalog(table), sanitize_environment({})).resolve(LINUX)
        self.assertEqual(ctx.exception.dependency, "glibc")


if __name__ == "__main__":
    unittest.main()
