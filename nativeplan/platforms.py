"""Platform identifiers selecting rows of the path catalog."""
from __future__ import annotations

from dataclasses import dataclass
import platform as host_platform


_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "i386": "i686",
    "riscv64gc": "riscv64",
}

_64_BIT_ARCHES = frozenset({"x86_64", "aarch64", "riscv64", "powerpc64", "powerpc64le", "s390x", "loongarch64"})

_BIG_ENDIAN_ARCHES = frozenset({"s390x", "powerpc", "powerpc64", "mips", "mips64", "sparc", "sparc64", "m68k"})

_DEFAULT_LIBC = {
    "linux": "glibc",
    "darwin": "libsystem",
    "ios": "libsystem",
    "windows": "msvc",
    "android": "bionic",
}


def _normalize_arch(value: str) -> str:
    arch = value.strip().lower()
    return _ARCH_ALIASES.get(arch, arch)


@dataclass(frozen=True, slots=True)
class PlatformIdentifier:
    """Operating system, libc flavour and architecture of the build target.

    The text form ``<os>-<libc>-<arch>`` (for example ``linux-glibc-x86_64``)
    is the key used by catalog files.
    """

    os: str
    libc: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os}-{self.libc}-{self.arch}"

    @classmethod
    def parse(cls, text: str) -> "PlatformIdentifier":
        parts = text.strip().lower().split("-", 2)
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Platform '{text}' must have the form <os>-<libc>-<arch>")
        os_name, libc, arch = parts
        return cls(os=os_name, libc=libc, arch=_normalize_arch(arch))

    @classmethod
    def from_target_triple(cls, triple: str) -> "PlatformIdentifier":
        """Derive an identifier from a compiler target triple.

        ``x86_64-unknown-linux-gnu`` maps to ``linux-glibc-x86_64`` and
        ``aarch64-unknown-linux-musl`` to ``linux-musl-aarch64``.
        """

        parts = triple.strip().lower().split("-")
        if len(parts) < 2:
            raise ValueError(f"Target triple '{triple}' is too short")
        arch = _normalize_arch(parts[0])
        rest = parts[1:]
        if "android" in triple or "androideabi" in triple:
            return cls(os="android", libc="bionic", arch=arch)
        if "windows" in rest:
            libc = "mingw" if rest[-1] == "gnu" else "msvc"
            return cls(os="windows", libc=libc, arch=arch)
        if "darwin" in rest:
            return cls(os="darwin", libc="libsystem", arch=arch)
        if "ios" in rest:
            return cls(os="ios", libc="libsystem", arch=arch)
        if "linux" in rest:
            env = rest[-1]
            if env.startswith("musl"):
                libc = "musl"
            else:
                libc = "glibc"
            return cls(os="linux", libc=libc, arch=arch)
        for bsd in ("freebsd", "netbsd", "openbsd", "dragonfly"):
            if bsd in rest:
                return cls(os=bsd, libc="libc", arch=arch)
        if "aix" in rest:
            return cls(os="aix", libc="libc", arch=arch)
        raise ValueError(f"Unrecognised target triple '{triple}'")

    @classmethod
    def detect(cls) -> "PlatformIdentifier":
        os_name = host_platform.system().lower() or "unknown"
        arch = _normalize_arch(host_platform.machine() or "unknown")
        libc = _DEFAULT_LIBC.get(os_name, "libc")
        if os_name == "linux":
            name, _ = host_platform.libc_ver()
            libc = "glibc" if name == "glibc" else "musl"
        return cls(os=os_name, libc=libc, arch=arch)

    @property
    def is_posix(self) -> bool:
        return self.os != "windows"

    @property
    def pointer_width(self) -> int:
        return 64 if self.arch in _64_BIT_ARCHES else 32

    @property
    def big_endian(self) -> bool:
        return self.arch in _BIG_ENDIAN_ARCHES

    @property
    def nix_system(self) -> str | None:
        """System double understood by Nix (``x86_64-linux``), if any."""

        if self.os in {"linux", "darwin"}:
            return f"{self.arch}-{self.os}"
        return None


__all__ = ["PlatformIdentifier"]
