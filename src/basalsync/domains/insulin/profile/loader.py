"""Profile store loader: reads YAML or JSON profile-store documents from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from basalsync.domains.insulin.profile.models import ProfileFormatError, ProfileStore

logger = logging.getLogger(__name__)


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ProfileFormatError(f"Duplicate key {key!r} in profile document")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def parse_profile_store(text: str) -> ProfileStore:
    """Parse YAML (or JSON, which is a YAML subset) into a ProfileStore."""
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)  # noqa: S506 - SafeLoader subclass
    except yaml.YAMLError as exc:
        raise ProfileFormatError(f"Profile store document is not parseable: {exc}") from exc
    return ProfileStore.from_dict(data)


def load_profile_store_file(path: str | Path) -> ProfileStore:
    """Load a profile-store document from ``path``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ProfileFormatError: If the document is malformed.
    """
    path = Path(path).expanduser()
    with open(path, encoding="utf-8") as f:
        store = parse_profile_store(f.read())
    logger.info(
        "Loaded %d profile(s) from %s (default=%s)",
        len(store),
        path,
        store.default_profile_name,
    )
    return store
