"""Path resolution and path checks for frontdev.

Directory structure:
    ~/.local/share/frontdev/         # FRONTDEV_DATA_DIR
    └── config.yaml                  # Global defaults

    <project>/
    ├── frontdev.yaml                # Project settings
    ├── webpack.config.js            # Bundler configuration
    └── node_modules/...             # Bundler script

    <tempdir>/<uuid>                 # Port file of the running bundler

The port file name is derived from a launch token and the absolute project
path. The token lives in the environment so that processes spawned by a
reloader share it with their parent and find the same port file again.
"""

import hashlib
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

import platformdirs

# Environment variable carrying the per-launch token
PORTFILE_TOKEN_ENV = "FRONTDEV_PORTFILE_UUID"

PROJECT_CONFIG_NAME = "frontdev.yaml"

# Prefix every bundler-served asset lives under
ASSET_MAPPING_PREFIX = "/VAADIN/"
# Streamed resources share the asset prefix but are never bundler output
DYNAMIC_RESOURCE_PREFIX = "/VAADIN/dynamic/resource/"
# Themed assets are served by the bundler from its static folder
STATIC_ASSET_PREFIX = "/VAADIN/static"

APP_THEME_PATTERN = re.compile(r"^/themes/[^/]+/")

_PARENT_DIRECTORY_PATTERN = re.compile(r"(^|/|\\)\.\.(/|\\|$)")


def get_data_dir() -> Path:
    """Get the frontdev data directory.

    Can be overridden with the FRONTDEV_DATA_DIR environment variable.

    Returns:
        Path to the data directory.
    """
    env_dir = os.environ.get("FRONTDEV_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return Path(platformdirs.user_data_dir("frontdev", appauthor=False))


def get_global_config_file() -> Path:
    """Get the path to the global defaults file."""
    return get_data_dir() / "config.yaml"


def get_project_config_file(project_dir: Path) -> Path:
    """Get the path to the per-project configuration file.

    Args:
        project_dir: Frontend project directory.

    Returns:
        Path to frontdev.yaml inside the project.
    """
    return Path(project_dir) / PROJECT_CONFIG_NAME


def get_launch_token() -> str:
    """Return the token identifying this launch, creating it on first use."""
    token = os.environ.get(PORTFILE_TOKEN_ENV)
    if not token:
        token = str(uuid.uuid4())
        os.environ[PORTFILE_TOKEN_ENV] = token
    return token


def get_port_file(project_dir: Path, token: Optional[str] = None) -> Path:
    """Get the port file used for a project.

    Args:
        project_dir: Frontend project directory.
        token: Launch token. Defaults to the token of this launch.

    Returns:
        Path inside the platform temp directory.
    """
    if token is None:
        token = get_launch_token()
    project_path = str(Path(project_dir).absolute())
    digest = hashlib.md5((token + project_path).encode("utf-8")).digest()
    name = str(uuid.UUID(bytes=digest, version=3))
    return Path(tempfile.gettempdir()) / name


def is_path_unsafe(path: str) -> bool:
    """Check whether a request path tries to leave its root.

    The path is URL-decoded before checking, so ``%2e%2e/`` is caught too.

    Args:
        path: Request path.

    Returns:
        True if the path contains a parent-directory segment.
    """
    if path is None:
        return False
    decoded = unquote(path)
    return bool(_PARENT_DIRECTORY_PATTERN.search(decoded))


def is_theme_path(path: str) -> bool:
    """Check whether a path points into an application theme folder."""
    return bool(path) and APP_THEME_PATTERN.search(path) is not None


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.

    Returns:
        The path (for chaining).
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
