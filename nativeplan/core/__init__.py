"""Shared helpers for configuration files and external commands."""

from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    FILE_LOADERS,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    reject_unknown_keys,
)

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "FILE_LOADERS",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "reject_unknown_keys",
]
