"""Error types and small byte helpers shared across the package."""

from __future__ import annotations

import errno as _errno
import sys

BPF_OBJ_NAME_LEN = 16

# Byte order of the running host, as understood by int.from_bytes / to_bytes.
NATIVE_ENDIAN: str = sys.byteorder
# Suffix used by clang-built object files for the host's byte order.
CLANG_ENDIAN: str = "eb" if NATIVE_ENDIAN == "big" else "el"


class NotSupportedError(Exception):
    """A feature is not supported by the current kernel."""

    def __init__(self, message: str = "not supported") -> None:
        super().__init__(message)


class VerifierError(Exception):
    """An error that carries the log produced by the kernel verifier."""

    def __init__(self, cause: BaseException, log: str) -> None:
        super().__init__(cause, log)
        self.cause = cause
        self.log = log
        self.__cause__ = cause

    def __str__(self) -> str:
        if not self.log:
            return str(self.cause)
        return f"{self.cause}: {self.log}"


class SyscallError(OSError):
    """An error that stands for a well-known error and a specific errno."""

    def __init__(self, error: BaseException, errno: int) -> None:
        super().__init__(errno, str(error))
        self.error = error

    def __str__(self) -> str:
        return str(self.error)


def _has_errno(err: BaseException | None, number: int) -> bool:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, OSError) and err.errno == number:
            return True
        err = err.__cause__
    return False


def c_string(data: bytes) -> str:
    """Return the text before the first NUL byte, or "" if there is none."""
    end = bytes(data).find(b"\x00")
    if end == -1:
        return ""
    return bytes(data[:end]).decode("utf-8", errors="replace")


def error_with_log(
    err: BaseException, log: bytes, log_err: BaseException | None
) -> VerifierError:
    """Wrap err together with the verifier log.

    log_err is the error from the call that filled the log; ENOSPC marks
    the log as truncated.
    """
    text = c_string(log).strip("\t\r\n ")
    if _has_errno(log_err, _errno.ENOSPC):
        text += " (truncated...)"
    return VerifierError(err, text)


def discard_zeroes(data: bytes) -> int:
    """Check that every byte is zero and return how many were consumed."""
    if any(data):
        raise ValueError("encountered non-zero byte")
    return len(data)


def new_obj_name(name: str) -> bytes:
    """Build a NUL-terminated object name, truncating it if it is too long."""
    raw = name.encode("utf-8")[: BPF_OBJ_NAME_LEN - 1]
    return raw.ljust(BPF_OBJ_NAME_LEN, b"\x00")


def syscall_error(err: BaseException, errno: int) -> SyscallError:
    """Combine a well-known error with the errno that caused it."""
    return SyscallError(err, errno)