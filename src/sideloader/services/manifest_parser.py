"""Parser for the semicolon-delimited release.manifest format.

Layout::

    Game Name;Package Name;Version Code;...
    My Game;com.example.app;42;...
    #filelist
    f;game.apk;...
    f;com.example.app/main.42.com.example.app.obb;...

Columns of the metadata header are looked up by label, so producers may
reorder them.
"""

import logging
import re
from typing import Optional

from pydantic import ValidationError

from sideloader.errors import ManifestFormatError
from sideloader.models.manifest import AUXILIARY_EXTENSION, PACKAGE_EXTENSION, ManifestInfo

DELIMITER = ";"
PACKAGE_NAME_LABEL = "Package Name"
VERSION_CODE_LABEL = "Version Code"
FILELIST_MARKER = "#filelist"
FILE_TYPE_TAG = "f"

logger = logging.getLogger("sideloader.manifest")


def normalize_manifest_path(path: str) -> str:
    """Strip whitespace and leading ``./`` or ``/`` from a manifest path."""
    path = path.strip().replace("\\", "/")
    while True:
        if path.startswith("./"):
            path = path[2:]
        elif path.startswith("/"):
            path = path[1:]
        else:
            return path.strip()


def _split(line: str) -> list[str]:
    return [field.strip() for field in line.split(DELIMITER)]


def _find_header(lines: list[str]) -> Optional[int]:
    for idx, line in enumerate(lines):
        if DELIMITER not in line:
            continue
        fields = _split(line)
        if PACKAGE_NAME_LABEL in fields and VERSION_CODE_LABEL in fields:
            return idx
    return None


def _column_value(header: list[str], row: list[str], label: str) -> str:
    col = header.index(label)
    value = row[col] if col < len(row) else ""
    if not value:
        raise ManifestFormatError(f"Manifest metadata row has no value for '{label}'")
    return value


def parse_manifest(text: str) -> ManifestInfo:
    """Parse release.manifest text.

    Args:
        text: Manifest document (CRLF or LF line endings)

    Returns:
        Fully populated ManifestInfo

    Raises:
        ManifestFormatError: If the header, metadata row, #filelist marker,
            package file or auxiliary files are missing
    """
    lines = [line.strip() for line in re.split(r"\r?\n|\r", text)]
    lines = [line for line in lines if line]

    header_idx = _find_header(lines)
    if header_idx is None:
        raise ManifestFormatError(
            f"Manifest metadata header with '{PACKAGE_NAME_LABEL}' and "
            f"'{VERSION_CODE_LABEL}' columns not found"
        )
    if header_idx + 1 >= len(lines):
        raise ManifestFormatError("Manifest metadata row missing after header")

    header = _split(lines[header_idx])
    row = _split(lines[header_idx + 1])
    package_name = _column_value(header, row, PACKAGE_NAME_LABEL)
    version_code = _column_value(header, row, VERSION_CODE_LABEL)

    marker_idx = next(
        (idx for idx, line in enumerate(lines) if line.lower() == FILELIST_MARKER),
        None,
    )
    if marker_idx is None:
        raise ManifestFormatError(f"Manifest section marker '{FILELIST_MARKER}' not found")

    package_paths: list[str] = []
    auxiliary_paths: list[str] = []
    for line in lines[marker_idx + 1:]:
        if DELIMITER not in line:
            continue
        fields = line.split(DELIMITER)
        if len(fields) < 3:
            continue
        if fields[0].strip() != FILE_TYPE_TAG:
            continue

        path = normalize_manifest_path(fields[1])
        lowered = path.lower()
        if lowered.endswith(PACKAGE_EXTENSION):
            package_paths.append(path)
        elif lowered.endswith(AUXILIARY_EXTENSION):
            auxiliary_paths.append(path)

    if not package_paths:
        raise ManifestFormatError(f"Manifest file list has no {PACKAGE_EXTENSION} entry")
    if not auxiliary_paths:
        raise ManifestFormatError(f"Manifest file list has no {AUXILIARY_EXTENSION} entries")

    try:
        info = ManifestInfo(
            package_name=package_name,
            version_code=version_code,
            package_file_path=package_paths[0],
            auxiliary_file_paths=auxiliary_paths,
        )
    except ValidationError as e:
        raise ManifestFormatError(f"Invalid manifest: {e}") from e

    logger.debug(
        f"Parsed manifest: package={info.package_name}, version={info.version_code}, "
        f"apk={info.package_file_path}, obb={len(info.auxiliary_file_paths)}"
    )
    return info
