"""Helpers for building device-side paths."""

import posixpath
import re
import time
from typing import Optional

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_file_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``.

    Example:
        >>> sanitize_file_name("My App v1.0 (final)!.apk")
        'My_App_v1.0__final__.apk'
    """
    return _UNSAFE_CHARS.sub("_", name)


def temp_package_path(temp_dir: str, file_name: str, now_ms: Optional[int] = None) -> str:
    """Timestamp-prefixed destination for a pushed package file."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{temp_dir.rstrip('/')}/{now_ms}_{sanitize_file_name(file_name)}"


def auxiliary_dir(obb_root: str, package_name: str) -> str:
    return f"{obb_root.rstrip('/')}/{package_name}"


def auxiliary_file_path(aux_dir: str, manifest_path: str) -> str:
    """Destination of an auxiliary file: its base name inside ``aux_dir``."""
    return f"{aux_dir.rstrip('/')}/{posixpath.basename(manifest_path)}"
