"""Manifest lookup from saved JSON reports.

The transfer core never persists a manifest. An operator who asks for a JSON
report (``--json-output``) gets one, and that report can be read back here to
find an entry's offset and size by name.
"""

import json
from pathlib import Path
from typing import Any

from tarmover.config import ConfigError
from tarmover.errors import NotFound
from tarmover.models import ManifestEntry


def _parse_entry(item: Any) -> ManifestEntry:
    try:
        return ManifestEntry(
            name=str(item["name"]),
            offset=int(item["offset"]),
            size=int(item["size"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid manifest entry: {item!r}") from e


def load_manifest(report_path: str) -> list[ManifestEntry]:
    """Load a manifest from a JSON report or a plain list of entries.

    A report is the output of JsonReporter; the manifest of its first upload
    result that has one is returned.

    Raises:
        NotFound: The file does not exist.
        ConfigError: The file is not valid JSON or holds no manifest.
    """
    path = Path(report_path)
    if not path.exists():
        raise NotFound(f"Manifest file not found: {report_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in manifest file: {e}") from e

    if isinstance(data, list):
        return [_parse_entry(item) for item in data]

    if isinstance(data, dict):
        for result in data.get("results", []):
            if result.get("manifest"):
                return [_parse_entry(item) for item in result["manifest"]]

    raise ConfigError(f"No manifest found in {report_path}")


def find_entry(manifest: list[ManifestEntry], name: str) -> ManifestEntry:
    """Find an entry by archive name.

    The name is matched as given, then with a leading "/" stripped, the way
    names are stored in the archive.

    Raises:
        NotFound: No entry has that name.
    """
    candidates = (name, name.lstrip("/"))
    for entry in manifest:
        if entry.name in candidates:
            return entry
    raise NotFound(f"No entry named {name!r} in manifest", entry=name)
