"""Number of CPUs the system may possibly have."""

from __future__ import annotations

import functools
import re

_POSSIBLE_CPUS_PATH = "/sys/devices/system/cpu/possible"
_RANGE_RE = re.compile(r"([+-]?\d+)-([+-]?\d+)\n?", re.ASCII)


def parse_cpus(spec: str) -> int:
    """Parse a CPU list of the form "0" or "0-n" into a CPU count.

    Multiple ranges are rejected, since they can't be unified into a
    single number.
    """
    if spec.strip("\n") == "0":
        return 1

    match = _RANGE_RE.fullmatch(spec)
    if match is None:
        raise ValueError(f"invalid format: {spec}")
    low, high = int(match.group(1)), int(match.group(2))
    if low != 0:
        raise ValueError(f"CPU spec doesn't start at zero: {spec}")
    return high + 1


def parse_cpus_from_file(path: str) -> int:
    """Read a CPU list from path and return the number of CPUs."""
    with open(path, encoding="utf-8") as fh:
        spec = fh.read()
    try:
        return parse_cpus(spec)
    except ValueError as err:
        raise ValueError(f"can't parse {path}: {err}") from err


@functools.cache
def _cached_possible_cpus() -> tuple[int, Exception | None]:
    try:
        return parse_cpus_from_file(_POSSIBLE_CPUS_PATH), None
    except (OSError, ValueError) as err:
        return 0, err


def possible_cpus() -> int:
    """Return the maximum number of CPUs the system may have; cached."""
    count, err = _cached_possible_cpus()
    if err is not None:
        raise err
    return count