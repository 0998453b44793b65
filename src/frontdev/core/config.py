"""Configuration for the frontdev dev server.

Settings are read from ``frontdev.yaml`` in the project directory and can be
overridden with ``FRONTDEV_*`` environment variables.
"""

import os
import re
import shutil
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .paths import ensure_directory, get_global_config_file, get_project_config_file

# Local installation path of the webpack-dev-server script
WEBPACK_SERVER = "node_modules/webpack-dev-server/bin/webpack-dev-server.js"
WEBPACK_CONFIG = "webpack.config.js"

# The bundler only reports readiness through its output; when it finishes it
# prints one of these in the last line of a compilation.
DEFAULT_SUCCESS_PATTERN = ": Compiled."
DEFAULT_FAILURE_PATTERN = ": Failed to compile."

DEFAULT_TIMEOUT_MS = 60000
DEFAULT_CONNECT_TIMEOUT = 120.0

_ENV_PREFIX = "FRONTDEV_"


class ConfigError(ValueError):
    """Invalid configuration file or value."""

    pass


def _parse_bool(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _check_pattern(name: str, value: Any) -> str:
    pattern = str(value)
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid {name} {pattern!r}: {e}") from e
    return pattern


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


@dataclass
class DevServerConfig:
    """Settings for one supervised bundler."""

    # Frontend project folder (holds node_modules and the bundler config)
    project_dir: Path = field(default_factory=Path.cwd)

    bundler_script: str = WEBPACK_SERVER
    bundler_config: str = WEBPACK_CONFIG

    # Runtime used to launch the bundler script; looked up on PATH when unset
    runtime_executable: Optional[str] = None

    # Port of an already running bundler, 0 to resolve one
    port: int = 0

    # Extra command line options, whitespace separated
    options: str = ""

    success_pattern: str = DEFAULT_SUCCESS_PATTERN
    failure_pattern: str = DEFAULT_FAILURE_PATTERN

    # How long start() blocks waiting for the first build
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    # Socket timeout for requests sent to the bundler (seconds)
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    # Keep the bundler running when the supervisor stops
    reuse_dev_server: bool = False

    # Stop the bundler from an atexit hook if the host forgets to
    register_exit_hook: bool = True

    @classmethod
    def load(
        cls, path: Optional[Path] = None, project_dir: Optional[Path] = None
    ) -> "DevServerConfig":
        """Load configuration from a YAML file.

        Args:
            path: Config file. Defaults to frontdev.yaml in the project.
            project_dir: Project directory. Defaults to the current directory.

        Returns:
            DevServerConfig instance. Global defaults from the data
            directory apply first; built-in defaults fill the rest.

        Raises:
            ConfigError: If the file exists but cannot be parsed.
        """
        project_dir = Path(project_dir) if project_dir else Path.cwd()
        if path is None:
            path = get_project_config_file(project_dir)

        # Global defaults first, the project file wins
        data = _read_yaml(get_global_config_file())
        data.pop("project_dir", None)
        data.update(_read_yaml(Path(path)))

        data.setdefault("project_dir", str(project_dir))
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DevServerConfig":
        """Create config from a dictionary.

        Relative ``project_dir`` values are resolved against the current
        directory.
        """
        try:
            return cls(
                project_dir=Path(data.get("project_dir") or Path.cwd()).resolve(),
                bundler_script=data.get("bundler_script", cls.bundler_script),
                bundler_config=data.get("bundler_config", cls.bundler_config),
                runtime_executable=data.get("runtime_executable"),
                port=int(data.get("port", cls.port) or 0),
                options=str(data.get("options", cls.options) or ""),
                success_pattern=_check_pattern(
                    "success_pattern", data.get("success_pattern", cls.success_pattern)
                ),
                failure_pattern=_check_pattern(
                    "failure_pattern", data.get("failure_pattern", cls.failure_pattern)
                ),
                timeout_ms=int(data.get("timeout_ms", cls.timeout_ms)),
                connect_timeout=float(
                    data.get("connect_timeout", cls.connect_timeout)
                ),
                reuse_dev_server=bool(
                    data.get("reuse_dev_server", cls.reuse_dev_server)
                ),
                register_exit_hook=bool(
                    data.get("register_exit_hook", cls.register_exit_hook)
                ),
            )
        except ConfigError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "DevServerConfig":
        """Return a copy with FRONTDEV_* environment variables applied."""
        environ = os.environ if environ is None else environ
        data = self.to_dict()
        for key in data:
            env_key = f"{_ENV_PREFIX}{key.upper()}"
            if env_key not in environ:
                continue
            value = environ[env_key]
            if key in ("reuse_dev_server", "register_exit_hook"):
                data[key] = _parse_bool(value)
            else:
                data[key] = value
        return self.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a plain dictionary."""
        data = asdict(self)
        data["project_dir"] = str(self.project_dir)
        return data

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration as YAML.

        Args:
            path: Target file. Defaults to frontdev.yaml in the project.
        """
        if path is None:
            path = get_project_config_file(self.project_dir)

        ensure_directory(path.parent)

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    @property
    def script_path(self) -> Path:
        return self.project_dir / self.bundler_script

    @property
    def config_path(self) -> Path:
        return self.project_dir / self.bundler_config

    def option_list(self) -> List[str]:
        """Split the extra options on whitespace."""
        return self.options.split()

    def resolve_runtime(self) -> Optional[str]:
        """Find the runtime executable, or None if it cannot be found."""
        runtime = self.runtime_executable or "node"
        if os.path.sep in runtime:
            return runtime if os.access(runtime, os.X_OK) else None
        return shutil.which(runtime)
