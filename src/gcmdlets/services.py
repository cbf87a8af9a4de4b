import logging
from typing import Any, Dict, Tuple

from googleapiclient import discovery

logger = logging.getLogger(__name__)

API_VERSIONS: Dict[str, str] = {
    "bigquery": "v2",
    "pubsub": "v1",
    "logging": "v2",
    "storage": "v1",
}

_services: Dict[Tuple[str, str], Any] = {}


def build_service(api: str) -> Any:
    """Build (once per process) the discovery client for an API.

    Credentials come from Application Default Credentials.
    """
    version = API_VERSIONS[api]
    key = (api, version)
    if key not in _services:
        logger.debug(f"Building {api} {version} discovery client")
        _services[key] = discovery.build(api, version, cache_discovery=False)
    return _services[key]
