"""Map manifest paths onto locally selected bundle files."""

import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from sideloader.errors import FileResolutionError
from sideloader.models.device import SelectedFile
from sideloader.services.manifest_parser import normalize_manifest_path

MANIFEST_FILE_NAME = "release.manifest"

FileSet = Mapping[str, SelectedFile]

logger = logging.getLogger("sideloader.bundle")


def select_folder(folder: Path) -> list[SelectedFile]:
    """List every file under ``folder`` the way a folder picker reports them.

    Relative paths start with the folder's own name, e.g.
    ``MyGame/com.example.app/main.1.obb``.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileResolutionError(str(folder))

    selected = []
    for root, dirs, files in os.walk(folder):
        dirs.sort()
        for file_name in sorted(files):
            path = Path(root) / file_name
            rel = path.relative_to(folder).as_posix()
            selected.append(SelectedFile(path=path, relative_path=f"{folder.name}/{rel}"))
    return selected


def normalize_relative_path(selected: SelectedFile) -> str:
    """Key of a selected file: the folder-relative path minus its first segment."""
    rel = selected.relative_path.replace("\\", "/")
    if not rel:
        return selected.name
    parts = rel.split("/")
    return "/".join(parts[1:]) if len(parts) > 1 else parts[0]


def build_file_set(selected_files: Iterable[SelectedFile]) -> FileSet:
    """Build the read-only FileSet for one bundle attempt."""
    files: dict[str, SelectedFile] = {}
    for selected in selected_files:
        key = normalize_relative_path(selected)
        if key in files:
            logger.warning(f"Duplicate bundle entry ignored: {selected.path}")
            continue
        files[key] = selected
    logger.debug(f"Built file set with {len(files)} entries")
    return MappingProxyType(files)


def resolve(file_set: FileSet, manifest_path: str) -> Optional[SelectedFile]:
    """Find the file for a manifest path.

    An exact key wins; otherwise the first key ending with "/" plus the path
    is used, which covers bundles nested one folder deeper than expected
    without matching "othergame.apk" for "game.apk".
    """
    wanted = normalize_manifest_path(manifest_path)
    exact = file_set.get(wanted)
    if exact is not None:
        return exact

    for key, selected in file_set.items():
        normalized = key.replace("\\", "/")
        if normalized.endswith("/" + wanted):
            logger.debug(f"Resolved {wanted} by suffix match: {key}")
            return selected
    return None


def require(file_set: FileSet, manifest_path: str) -> SelectedFile:
    """Like ``resolve`` but raises FileResolutionError when nothing matches."""
    selected = resolve(file_set, manifest_path)
    if selected is None:
        raise FileResolutionError(manifest_path)
    return selected


def find_manifest(file_set: FileSet) -> Optional[SelectedFile]:
    return resolve(file_set, MANIFEST_FILE_NAME)
