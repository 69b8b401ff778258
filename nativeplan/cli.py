"""Command line interface for the resolver."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Dict, Iterable, List
import json
import logging
import shlex
import sys

from .catalog import PathCatalog
from .config import LOG_LEVELS, ResolverConfig
from .environment import EnvironmentSanitizer
from .errors import ResolutionError
from .features import FEATURES, FeatureFlag
from .plan import CompilationPlan
from .platforms import PlatformIdentifier
from .resolver import build_catalog, resolve_plan


def _split_values(values: Iterable[str]) -> List[str]:
    items: List[str] = []
    for value in values:
        if not value:
            continue
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="nativeplan", description="Resolve native toolchain and binding-generator configuration")
    parser.add_argument("-c", "--config", type=Path, help="Resolver configuration file (TOML, JSON or YAML)")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Logging verbosity (overrides the configuration)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve and print a compilation plan")
    resolve_parser.add_argument("-f", "--feature", action="append", default=[], help="Feature(s) to enable (comma-separated)")
    resolve_parser.add_argument("--compiler", help="Explicit compiler binary; wins over environment and catalog")
    platform_group = resolve_parser.add_mutually_exclusive_group()
    platform_group.add_argument("-p", "--platform", help="Platform identifier such as linux-glibc-x86_64")
    platform_group.add_argument("--target", help="Target triple such as x86_64-unknown-linux-gnu")
    resolve_parser.add_argument("--catalog", action="append", default=[], metavar="PATH", help="Additional catalog file")
    resolve_parser.add_argument("--no-probe", action="store_true", help="Use only the static catalog")
    resolve_parser.add_argument(
        "--format",
        choices=("json", "shell", "cargo"),
        default="json",
        help="Output format for the plan",
    )

    subparsers.add_parser("features", help="List available features")

    catalog_parser = subparsers.add_parser("catalog", help="Show catalog entries for a platform")
    catalog_parser.add_argument("-p", "--platform", help="Platform identifier (defaults to the host)")
    catalog_parser.add_argument("--catalog", action="append", default=[], metavar="PATH", help="Additional catalog file")
    catalog_parser.add_argument("--probe", action="store_true", help="Ask the Nix probe before the static table")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)

    try:
        config = ResolverConfig.load(args.config) if args.config else ResolverConfig()
    except ResolutionError as exc:
        print(f"Error: {exc}")
        return 1
    _configure_logging(args.log_level or config.log_level)

    if args.command == "resolve":
        return _handle_resolve(args, config)
    if args.command == "features":
        return _handle_features()
    if args.command == "catalog":
        return _handle_catalog(args, config)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_resolve(args: Namespace, config: ResolverConfig) -> int:
    try:
        platform = None
        if args.platform:
            platform = PlatformIdentifier.parse(args.platform)
        elif args.target:
            platform = PlatformIdentifier.from_target_triple(args.target)
        request = config.to_request(
            extra_features=_split_values(args.feature),
            compiler=args.compiler,
            platform=platform,
            probe=False if args.no_probe else None,
            extra_catalogs=args.catalog,
        )
        plan = resolve_plan(request)
    except (ResolutionError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1

    if args.format == "json":
        print(json.dumps(plan.to_mapping(), indent=2))
    elif args.format == "shell":
        for line in format_shell(plan):
            print(line)
    else:
        for line in plan.cargo_directives():
            print(line)
    return 0


def format_shell(plan: CompilationPlan) -> List[str]:
    """Shell assignments for the compiler and exports for the binding generator."""

    lines = [
        f"NATIVEPLAN_COMPILER={shlex.quote(plan.compiler.binary)}",
        f"NATIVEPLAN_COMPILE_ARGS={shlex.quote(shlex.join(plan.compiler.arguments))}",
        f"NATIVEPLAN_LINK_ARGS={shlex.quote(shlex.join(plan.compiler.link_arguments))}",
    ]
    if plan.binding_generator.header:
        lines.append(f"NATIVEPLAN_BINDING_HEADER={shlex.quote(plan.binding_generator.header)}")
    for name, value in plan.binding_generator.variables:
        lines.append(f"export {name}={shlex.quote(value)}")
    return lines


def _print_table(headers: List[str], rows: List[Dict[str, str]]) -> None:
    widths = {header: len(header) for header in headers}
    for row in rows:
        for header in headers:
            widths[header] = max(widths[header], len(row.get(header, "")))

    def _format(row: Dict[str, str]) -> str:
        return "  ".join(row.get(header, "").ljust(widths[header]) for header in headers).rstrip()

    print(_format({header: header for header in headers}))
    print("  ".join("-" * widths[header] for header in headers))
    for row in rows:
        print(_format(row))


def _handle_features() -> int:
    rows: List[Dict[str, str]] = []
    for flag in FeatureFlag:
        spec = FEATURES[flag]
        link = f"{spec.link[0]} ({spec.link[1]})" if spec.link else "-"
        rows.append({
            "Feature": flag.value,
            "Defines": " ".join(define.flag() for define in spec.defines) or "-",
            "Link": link,
            "Excludes": ", ".join(sorted(str(other) for other in spec.exclusive_with)) or "-",
            "Description": spec.description,
        })
    _print_table(["Feature", "Defines", "Link", "Excludes", "Description"], rows)
    return 0


def _handle_catalog(args: Namespace, config: ResolverConfig) -> int:
    try:
        platform = PlatformIdentifier.parse(args.platform) if args.platform else (
            config.resolve_platform() or PlatformIdentifier.detect()
        )
        request = config.to_request(platform=platform, probe=args.probe, extra_catalogs=args.catalog)
        snapshot = EnvironmentSanitizer().apply()
        catalog: PathCatalog = build_catalog(request, snapshot)
        entries = [catalog.lookup(platform, name) for name in catalog.known(platform)]
    except (ResolutionError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1

    if not entries:
        print(f"No catalog entries for platform '{platform}'")
        return 0

    rows = [
        {
            "Dependency": entry.dependency_name,
            "Version": entry.version or "-",
            "Source": entry.source,
            "Headers": ", ".join(entry.header_paths) or "-",
            "Binary": entry.binary_path or "-",
        }
        for entry in entries
    ]
    _print_table(["Dependency", "Version", "Source", "Headers", "Binary"], rows)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
