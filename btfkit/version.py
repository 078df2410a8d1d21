"""Kernel version numbers and detection of the running kernel's version."""

from __future__ import annotations

import functools
import os
import re
from dataclasses import dataclass

# Version substituted by the loader with the running kernel's version.
MAGIC_KERNEL_VERSION = 0xFFFFFFFE

# One to three decimals separated by dots, with an optional patch level, at
# the start of the text or right after whitespace.
_KERNEL_VERSION_RE = re.compile(r"(?:\A|\s)\d{1,3}\.\d{1,3}(?:\.\d{1,3})?", re.ASCII)
_VERSION_RE = re.compile(r"\s*(\d+)\.(\d+)(?:\.(\d+))?", re.ASCII)
_U16_MAX = 0xFFFF


@dataclass(frozen=True)
class Version:
    """A version in the form Major.Minor.Patch."""

    major: int = 0
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        if self.patch == 0:
            return f"v{self.major}.{self.minor}"
        return f"v{self.major}.{self.minor}.{self.patch}"

    def _parts(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def less(self, other: Version) -> bool:
        """Return True if this version is lower than other."""
        return self._parts() < other._parts()

    def unspecified(self) -> bool:
        """Return True if every component is zero."""
        return self._parts() == (0, 0, 0)

    def kernel(self) -> int:
        """Encode the version like the kernel's KERNEL_VERSION macro."""
        sublevel = min(self.patch, 255)
        return ((self.major & 0xFF) << 16) | ((self.minor & 0xFF) << 8) | (sublevel & 0xFF)


def parse_version(text: str) -> Version:
    """Parse "Major.Minor[.Patch]"; the patch level is optional."""
    match = _VERSION_RE.match(text)
    if match is None:
        raise ValueError(f"invalid version: {text}")
    major, minor = int(match.group(1)), int(match.group(2))
    if major > _U16_MAX or minor > _U16_MAX:
        raise ValueError(f"invalid version: {text}")
    patch = int(match.group(3)) if match.group(3) is not None else 0
    if patch > _U16_MAX:
        patch = 0
    return Version(major, minor, patch)


def find_kernel_version(text: str) -> Version:
    """Parse the last x.y(.z) version number found in text."""
    matches = _KERNEL_VERSION_RE.findall(text)
    if not matches:
        raise ValueError(f"no kernel version in string: {text}")
    last = matches[-1]
    try:
        return parse_version(last)
    except ValueError as err:
        raise ValueError(f"parsing version string {last}: {err}") from err


def _detect_kernel_version() -> Version:
    try:
        with open("/proc/version_signature", encoding="utf-8", errors="replace") as fh:
            signature = fh.read()
    except OSError:
        pass
    else:
        return find_kernel_version(signature)

    if not hasattr(os, "uname"):
        raise OSError("calling uname: unsupported platform")
    uname = os.uname()

    try:
        return find_kernel_version(uname.version)
    except ValueError:
        pass
    return find_kernel_version(uname.release)


@functools.cache
def _cached_kernel_version() -> tuple[Version | None, Exception | None]:
    try:
        return _detect_kernel_version(), None
    except (OSError, ValueError) as err:
        return None, err


def kernel_version() -> Version:
    """Return the version of the running kernel; the result is cached."""
    version, err = _cached_kernel_version()
    if err is not None:
        raise err
    assert version is not None
    return version