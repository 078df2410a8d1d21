"""Run-once kernel feature probes."""

from __future__ import annotations

import threading
from typing import Callable

from btfkit.errors import NotSupportedError
from btfkit.version import Version, parse_version


class UnsupportedFeatureError(NotSupportedError):
    """A feature is not supported by the running kernel."""

    def __init__(self, name: str, minimum_version: Version) -> None:
        self.name = name
        self.minimum_version = minimum_version
        if minimum_version.unspecified():
            message = f"{name} not supported"
        else:
            message = f"{name} not supported (requires >= {minimum_version})"
        super().__init__(message)


class FeatureDetectionError(Exception):
    """A feature probe could not decide whether the feature is available."""


def feature_test(name: str, version: str, fn: Callable[[], None]) -> Callable[[], None]:
    """Wrap a feature probe so that a decisive result is computed only once.

    fn returns normally if the feature is available and raises
    NotSupportedError if it is not; any other exception means the probe
    could not run and is not cached. version has the form Major.Minor[.Patch].

    The returned callable returns None if the feature is available, raises
    UnsupportedFeatureError if it is not, and FeatureDetectionError if the
    probe failed.
    """
    minimum = parse_version(version)
    lock = threading.Lock()
    decided = False
    result: UnsupportedFeatureError | None = None

    def check() -> None:
        nonlocal decided, result
        with lock:
            if not decided:
                try:
                    fn()
                except NotSupportedError:
                    result = UnsupportedFeatureError(name, minimum)
                except Exception as err:
                    raise FeatureDetectionError(
                        f"detect support for {name}: {err}"
                    ) from err
                decided = True
            cached = result
        if cached is not None:
            raise cached.with_traceback(None)

    return check