"""
Monitored resource type cache for gcmdlets.

The descriptors returned by Cloud Logging's monitoredResourceDescriptors.list
rarely change, so they are fetched once and kept in a cache file that later
invocations read instead of calling the API.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from gcmdlets.core import InvalidArgumentError

logger = logging.getLogger(__name__)

CACHE_DIR = Path.home() / ".gcmdlets"
CACHE_FILE = CACHE_DIR / "cache.json"
CACHE_VERSION = 1


def _descriptors_to_dict(descriptors: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Serializes the descriptors, keeping only what validation needs."""
    return {
        "version": CACHE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "resource_descriptors": [
            {
                "type": d["type"],
                "displayName": d.get("displayName", ""),
                "description": d.get("description", ""),
                "labels": [
                    {"key": label["key"], "description": label.get("description", "")}
                    for label in d.get("labels", [])
                ],
            }
            for d in descriptors
        ],
    }


def _dict_to_descriptors(data: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    if data.get("version") != CACHE_VERSION:
        logger.warning(
            f"Cache version mismatch (expected {CACHE_VERSION}, got {data.get('version')}). Ignoring cache."
        )
        return None
    return list(data["resource_descriptors"])


def read_cache() -> Optional[List[Dict[str, Any]]]:
    """Reads the resource descriptors from the cache file."""
    if not CACHE_FILE.exists():
        logger.debug("Cache file not found.")
        return None

    try:
        with open(CACHE_FILE, "r") as f:
            data = json.load(f)
        logger.debug("Successfully loaded data from cache file.")
        return _dict_to_descriptors(data)
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.warning(f"Could not read cache file due to an error: {e}")
        return None


def write_cache(descriptors: Iterable[Dict[str, Any]]) -> None:
    """Writes the resource descriptors to the cache file."""
    try:
        CACHE_DIR.mkdir(parents=True, exist_ok=True)
        data = _descriptors_to_dict(descriptors)
        with open(CACHE_FILE, "w") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Successfully wrote resource descriptors to cache file: {CACHE_FILE}")
    except OSError as e:
        logger.error(f"Failed to write to cache file: {e}")


def clear_cache() -> bool:
    """Deletes the cache file."""
    try:
        if CACHE_FILE.exists():
            CACHE_FILE.unlink()
            logger.debug(f"Successfully deleted cache file: {CACHE_FILE}")
            return True
    except OSError as e:
        logger.error(f"Failed to delete cache file: {e}")
    return False


class ResourceTypeCache:
    """Monitored resource descriptors, loaded at most once per instance.

    ``loader`` is called on first use when the cache file is missing,
    unreadable or from another cache version. The file does not expire;
    ``gcmdlets cache clear`` forces a refetch. It is written only after the
    loader returned the complete listing. With ``persist`` disabled the file
    is neither read nor written.
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[Dict[str, Any]]],
        persist: bool = True,
    ):
        self._loader = loader
        self._persist = persist
        self._descriptors: Optional[Dict[str, Dict[str, Any]]] = None

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._descriptors is not None:
            return self._descriptors

        descriptors = read_cache() if self._persist else None
        if descriptors is None:
            logger.debug("Fetching monitored resource descriptors from the API")
            descriptors = list(self._loader())
            if self._persist:
                write_cache(descriptors)

        self._descriptors = {d["type"].lower(): d for d in descriptors}
        return self._descriptors

    @property
    def types(self) -> List[str]:
        return sorted(d["type"] for d in self._load().values())

    @property
    def descriptors(self) -> List[Dict[str, Any]]:
        return [self._load()[key] for key in sorted(self._load())]

    def descriptor(self, resource_type: str) -> Dict[str, Any]:
        """Look up a descriptor by type, ignoring case."""
        found = self._load().get(resource_type.lower())
        if found is None:
            raise InvalidArgumentError(
                f"'{resource_type}' is not a monitored resource type. "
                "Run 'gcmdlets logging resource-type list' to see valid types.",
                resource=resource_type,
            )
        return found

    def validate(self, resource_type: str) -> str:
        """Return the canonical spelling of a resource type."""
        return self.descriptor(resource_type)["type"]

    def label_keys(self, resource_type: str) -> List[str]:
        return [label["key"] for label in self.descriptor(resource_type).get("labels", [])]
