from __future__ import annotations

from pathlib import Path
import json
import subprocess
import tempfile
import textwrap
import unittest

from nativeplan.catalog import NixProbe, PathCatalog, StaticTable, load_builtin_catalog
from nativeplan.core.command_runner import CommandResult, RecordingCommandRunner
from nativeplan.errors import ConfigurationError, MissingDependency
from nativeplan.platforms import PlatformIdentifier

from tests.catalog_fixtures import (
    GCC_CXX_INCLUDE,
    GCC_ROOT,
    GLIBC_INCLUDE,
    GLIBC_ROOT,
    LIBCLANG_RESOURCE,
    LINUX,
    MUSL,
    ZSTD_INCLUDE,
    ZSTD_LIB,
    sample_catalog,
    sample_catalog_data,
)


def _nix_answer(path: str, version: str | None) -> CommandResult:
    return CommandResult(command=["nix"], returncode=0, stdout=json.dumps({"path": path, "version": version}), stderr="")


class StaticTableTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = StaticTable.from_mapping(sample_catalog_data())

    def test_entry_expands_layout_below_root(self) -> None:
        glibc = self.table.entry(LINUX, "glibc")
        assert glibc is not None
        self.assertEqual(glibc.header_paths, (GLIBC_INCLUDE,))
        self.assertEqual(glibc.library_paths, (f"{GLIBC_ROOT}/lib",))
        self.assertEqual(glibc.root, GLIBC_ROOT)
        self.assertEqual(glibc.version, "2.40-66")
        self.assertEqual(glibc.source, "static table")

    def test_version_placeholders(self) -> None:
        gcc = self.table.entry(LINUX, "gcc")
        libclang = self.table.entry(LINUX, "libclang")
        assert gcc is not None and libclang is not None
        self.assertEqual(gcc.header_paths, (GCC_CXX_INCLUDE,))
        self.assertEqual(gcc.binary_path, f"{GCC_ROOT}/bin/g++")
        self.assertEqual(libclang.header_paths, (LIBCLANG_RESOURCE,))

    def test_absolute_override_paths_are_kept(self) -> None:
        zstd = self.table.entry(LINUX, "zstd")
        assert zstd is not None
        self.assertEqual(zstd.header_paths, (ZSTD_INCLUDE,))
        self.assertEqual(zstd.library_paths, (ZSTD_LIB,))

    def test_unknown_platform_or_dependency(self) -> None:
        self.assertIsNone(self.table.entry(LINUX, "jemalloc"))
        self.assertIsNone(self.table.entry(PlatformIdentifier.parse("darwin-libsystem-aarch64"), "gcc"))
        self.assertEqual(self.table.dependencies(MUSL), ["gcc", "libclang", "musl"])
        self.assertEqual(self.table.platforms(), ["linux-glibc-x86_64", "linux-musl-x86_64"])

    def test_unknown_brace_sequences_are_kept_verbatim(self) -> None:
        data = sample_catalog_data()
        data["packages"]["zlib"] = {"headers": ["/opt/{weird}/include", "include"]}
        data["platforms"]["linux-glibc-x86_64"]["zlib"] = {"root": "/nix/store/zlib-dev", "version": "1.3.1"}
        zlib = StaticTable.from_mapping(data).entry(LINUX, "zlib")
        assert zlib is not None
        self.assertEqual(zlib.header_paths, ("/opt/{weird}/include", "/nix/store/zlib-dev/include"))

    def test_version_placeholder_without_version_is_a_configuration_error(self) -> None:
        data = sample_catalog_data()
        data["platforms"]["linux-glibc-x86_64"]["gcc"] = {"root": GCC_ROOT}
        table = StaticTable.from_mapping(data)
        with self.assertRaisesRegex(ConfigurationError, r"\{version\}"):
            table.entry(LINUX, "gcc")

    def test_unknown_library_output_is_rejected(self) -> None:
        data = {"packages": {"zlib": {"libraries": ["lib"], "library_output": "dev"}}}
        with self.assertRaisesRegex(ValueError, "library_output"):
            StaticTable.from_mapping(data)

    def test_relative_root_is_rejected(self) -> None:
        data = {"platforms": {"linux-glibc-x86_64": {"glibc": {"root": "nix/store/x"}}}}
        with self.assertRaises(ValueError):
            StaticTable.from_mapping(data)

    def test_unknown_entry_keys_are_rejected(self) -> None:
        data = {"platforms": {"linux-glibc-x86_64": {"glibc": {"root": "/x", "prefix": "/y"}}}}
        with self.assertRaisesRegex(ValueError, "unknown keys: prefix"):
            StaticTable.from_mapping(data)

    def test_relative_layout_without_root_is_a_configuration_error(self) -> None:
        data = {
            "packages": {"zlib": {"headers": ["include"]}},
            "platforms": {"linux-glibc-x86_64": {"zlib": {"version": "1.3"}}},
        }
        table = StaticTable.from_mapping(data)
        with self.assertRaises(ConfigurationError):
            table.entry(LINUX, "zlib")


class StaticTableFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_builtin_catalog_pins_the_default_platform(self) -> None:
        data = load_builtin_catalog()
        self.assertIn("linux-glibc-x86_64", data["platforms"])
        table = StaticTable.builtin()
        glibc = table.entry(LINUX, "glibc")
        assert glibc is not None
        self.assertTrue(glibc.root.startswith("/nix/store/"))
        self.assertTrue(all(path.startswith("/") for path in glibc.header_paths))

    def test_files_merge_over_each_other(self) -> None:
        base = self.root / "base.yaml"
        base.write_text(
            textwrap.dedent(
                """
                packages:
                  glibc:
                    headers: [include]
                platforms:
                  linux-glibc-x86_64:
                    glibc:
                      root: /nix/store/old-glibc
                      version: "2.39"
                """
            ).strip()
        )
        local = self.root / "local.json"
        local.write_text(json.dumps({"platforms": {"linux-glibc-x86_64": {"glibc": {"root": "/nix/store/new-glibc"}}}}))

        table = StaticTable.from_files([base, local], include_builtin=False)
        glibc = table.entry(LINUX, "glibc")
        assert glibc is not None
        self.assertEqual(glibc.root, "/nix/store/new-glibc")
        self.assertEqual(glibc.version, "2.39")
        self.assertEqual(glibc.header_paths, ("/nix/store/new-glibc/include",))

    def test_overlays_apply_after_files(self) -> None:
        overlay = {"platforms": {"linux-glibc-x86_64": {"gcc": {"root": "/opt/gcc", "version": "13.2.0"}}}}
        table = StaticTable.from_files((), overlays=[overlay])
        gcc = table.entry(LINUX, "gcc")
        assert gcc is not None
        self.assertEqual(gcc.header_paths, ("/opt/gcc/include/c++/13.2.0",))

    def test_unreadable_file_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            StaticTable.from_files([self.root / "missing.yaml"])
        bad = self.root / "catalog.ini"
        bad.write_text("[x]")
        with self.assertRaises(ConfigurationError):
            StaticTable.from_files([bad])


class NixProbeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = StaticTable.from_mapping(sample_catalog_data())

    def test_nix_answer_wins_over_static_table(self) -> None:
        runner = RecordingCommandRunner([_nix_answer("/nix/store/zzzz-glibc-2.41-dev", "2.41")])
        catalog = PathCatalog(self.table, NixProbe(self.table.layouts, runner))
        glibc = catalog.lookup(LINUX, "glibc")
        self.assertEqual(glibc.root, "/nix/store/zzzz-glibc-2.41-dev")
        self.assertEqual(glibc.version, "2.41")
        self.assertEqual(glibc.source, "nix probe")
        command = runner.commands[0].command
        self.assertEqual(command[0], "nix")
        self.assertIn("nixpkgs#legacyPackages.x86_64-linux.glibc.dev", command)

    def test_failed_query_falls_back_to_static_table(self) -> None:
        runner = RecordingCommandRunner([CommandResult(command=["nix"], returncode=1, stdout="", stderr="error: attribute missing")])
        catalog = PathCatalog(self.table, NixProbe(self.table.layouts, runner))
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            glibc = catalog.lookup(LINUX, "glibc")
        self.assertEqual(glibc.root, GLIBC_ROOT)
        self.assertEqual(glibc.source, "static table")

    def test_malformed_answer_falls_back(self) -> None:
        runner = RecordingCommandRunner([
            CommandResult(command=["nix"], returncode=0, stdout="not json", stderr=""),
            CommandResult(command=["nix"], returncode=0, stdout=json.dumps({"path": "relative"}), stderr=""),
        ])
        probe = NixProbe(self.table.layouts, runner)
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            self.assertIsNone(probe.probe(LINUX, "glibc"))
            self.assertIsNone(probe.probe(LINUX, "gcc"))
        self.assertTrue(probe.available)

    def test_missing_nix_binary_disables_lookup(self) -> None:
        runner = RecordingCommandRunner([FileNotFoundError("nix")])
        probe = NixProbe(self.table.layouts, runner)
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            self.assertIsNone(probe.probe(LINUX, "glibc"))
        self.assertFalse(probe.available)
        self.assertIsNone(probe.probe(LINUX, "gcc"))
        self.assertEqual(len(runner.commands), 1)

    def test_timeout_disables_lookup(self) -> None:
        runner = RecordingCommandRunner([subprocess.TimeoutExpired(["nix"], 60)])
        probe = NixProbe(self.table.layouts, runner)
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            probe.probe(LINUX, "glibc")
        self.assertFalse(probe.available)

    def test_answers_are_cached(self) -> None:
        runner = RecordingCommandRunner([_nix_answer("/nix/store/zzzz-zstd-dev", "1.5.7")])
        probe = NixProbe(self.table.layouts, runner)
        first = probe.probe(LINUX, "zstd")
        second = probe.probe(LINUX, "zstd")
        self.assertIs(first, second)
        self.assertEqual(len(runner.commands), 1)

    def test_split_package_keeps_libraries_in_the_library_output(self) -> None:
        answer = {"path": "/nix/store/zzzz-zstd-1.5.7-dev", "lib": "/nix/store/yyyy-zstd-1.5.7", "version": "1.5.7"}
        runner = RecordingCommandRunner([CommandResult(command=["nix"], returncode=0, stdout=json.dumps(answer), stderr="")])
        probe = NixProbe(self.table.layouts, runner)
        zstd = probe.probe(LINUX, "zstd")
        assert zstd is not None
        self.assertEqual(zstd.header_paths, ("/nix/store/zzzz-zstd-1.5.7-dev/include",))
        self.assertEqual(zstd.library_paths, ("/nix/store/yyyy-zstd-1.5.7/lib",))
        self.assertIn("lib = (p.lib or p.out or p).outPath;", runner.commands[0].command[-1])

    def test_single_output_package_ignores_the_library_output(self) -> None:
        answer = {"path": "/nix/store/zzzz-glibc-2.41-dev", "lib": "/nix/store/yyyy-glibc-2.41", "version": "2.41"}
        runner = RecordingCommandRunner([CommandResult(command=["nix"], returncode=0, stdout=json.dumps(answer), stderr="")])
        glibc = NixProbe(self.table.layouts, runner).probe(LINUX, "glibc")
        assert glibc is not None
        self.assertEqual(glibc.library_paths, ("/nix/store/zzzz-glibc-2.41-dev/lib",))

    def test_relative_library_output_falls_back(self) -> None:
        answer = {"path": "/nix/store/zzzz-zstd-dev", "lib": "zstd-lib", "version": "1.5.7"}
        runner = RecordingCommandRunner([CommandResult(command=["nix"], returncode=0, stdout=json.dumps(answer), stderr="")])
        catalog = PathCatalog(self.table, NixProbe(self.table.layouts, runner))
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            zstd = catalog.lookup(LINUX, "zstd")
        self.assertEqual(zstd.library_paths, (ZSTD_LIB,))
        self.assertEqual(zstd.source, "static table")

    def test_platform_without_nix_system_is_not_queried(self) -> None:
        runner = RecordingCommandRunner()
        probe = NixProbe(self.table.layouts, runner)
        self.assertIsNone(probe.probe(PlatformIdentifier.parse("windows-msvc-x86_64"), "zstd"))
        self.assertIsNone(probe.probe(LINUX, "unlisted"))
        self.assertEqual(runner.commands, [])

    def test_nix_runs_with_given_environment(self) -> None:
        runner = RecordingCommandRunner([_nix_answer("/nix/store/zzzz-glibc-dev", None)])
        probe = NixProbe(self.table.layouts, runner, flake="github:NixOS/nixpkgs/nixos-25.05", environment={"PATH": "/bin"})
        entry = probe.probe(LINUX, "glibc")
        assert entry is not None
        self.assertIsNone(entry.version)
        self.assertEqual(runner.commands[0].env, {"PATH": "/bin"})
        self.assertIn("github:NixOS/nixpkgs/nixos-25.05#legacyPackages.x86_64-linux.glibc.dev", runner.commands[0].command)


class PathCatalogTests(unittest.TestCase):
    def test_lookup_failure_names_dependency_platform_and_tiers(self) -> None:
        catalog = sample_catalog()
        with self.assertRaises(MissingDependency) as ctx:
            catalog.lookup(MUSL, "zstd")
        error = ctx.exception
        self.assertEqual(error.dependency, "zstd")
        self.assertEqual(error.platform, "linux-musl-x86_64")
        self.assertEqual(error.tiers, ("static table",))
        self.assertIn("linux-musl-x86_64", str(error))

    def test_tiers_list_nix_first(self) -> None:
        table = StaticTable.from_mapping(sample_catalog_data())
        catalog = PathCatalog(table, NixProbe(table.layouts, RecordingCommandRunner()))
        self.assertEqual(catalog.tiers(), ["nix probe", "static table"])
        self.assertEqual(sample_catalog().tiers(), ["static table"])


    def test_tiers_drop_a_disabled_nix_lookup(self) -> None:
        table = StaticTable.from_mapping(sample_catalog_data())
        runner = RecordingCommandRunner([FileNotFoundError("nix")])
        catalog = PathCatalog(table, NixProbe(table.layouts, runner))
        with self.assertLogs("nativeplan.catalog", level="WARNING"):
            with self.assertRaises(MissingDependency) as ctx:
                catalog.lookup(LINUX, "musl")
        self.assertEqual(ctx.exception.tiers, ("static table",))
        self.assertEqual(catalog.tiers(), ["static table"])

if __name__ == "__main__":
    unittest.main()
