"""Default project resolution.

Order: explicit value, environment, active gcloud configuration, then the
project attached to Application Default Credentials.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Optional

import google.auth
from google.auth import exceptions as auth_exceptions

from gcmdlets.core import InvalidArgumentError

logger = logging.getLogger(__name__)

PROJECT_ENV_VARS = ("CLOUDSDK_CORE_PROJECT", "GOOGLE_CLOUD_PROJECT")


def gcloud_config_dir() -> Path:
    override = os.environ.get("CLOUDSDK_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".config" / "gcloud"


def gcloud_project(config_dir: Optional[Path] = None) -> Optional[str]:
    """Read ``[core] project`` from the active gcloud configuration."""
    config_dir = config_dir or gcloud_config_dir()
    active = os.environ.get("CLOUDSDK_ACTIVE_CONFIG_NAME")
    if not active:
        active_file = config_dir / "active_config"
        active = "default"
        if active_file.exists():
            active = active_file.read_text().strip() or "default"

    config_file = config_dir / "configurations" / f"config_{active}"
    if not config_file.exists():
        logger.debug(f"No gcloud configuration at {config_file}")
        return None

    parser = configparser.ConfigParser()
    try:
        parser.read(config_file)
    except configparser.Error as e:
        logger.warning(f"Could not parse gcloud configuration {config_file}: {e}")
        return None
    return parser.get("core", "project", fallback=None) or None


def credentials_project() -> Optional[str]:
    try:
        _, project = google.auth.default()
    except auth_exceptions.DefaultCredentialsError as e:
        logger.debug(f"No default credentials: {e}")
        return None
    return project


def resolve_project(project: Optional[str] = None) -> str:
    """Return the project to address, or raise if none is configured."""
    if project:
        return project

    for name in PROJECT_ENV_VARS:
        value = os.environ.get(name)
        if value:
            logger.debug(f"Using project '{value}' from ${name}")
            return value

    value = gcloud_project()
    if value:
        logger.debug(f"Using project '{value}' from gcloud configuration")
        return value

    value = credentials_project()
    if value:
        logger.debug(f"Using project '{value}' from default credentials")
        return value

    raise InvalidArgumentError(
        "No project specified. Pass --project or run 'gcloud config set project PROJECT_ID'."
    )
