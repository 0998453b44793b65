"""Core modules for frontdev.

This package contains the bundler supervision machinery:
    - config: Project configuration
    - paths: Port file location and request path checks
    - bundler: HTTP access to the bundler
    - ports: Port allocation and reuse
    - gate: Readiness gate
    - monitor: Bundler output parsing
    - watchdog: Orphan watchdog socket
    - supervisor: Bundler process lifecycle
    - context: Process-scoped dev server owner
"""

from . import bundler
from . import config
from . import context
from . import errors
from . import gate
from . import monitor
from . import paths
from . import ports
from . import supervisor
from . import watchdog

__all__ = [
    "bundler",
    "config",
    "context",
    "errors",
    "gate",
    "monitor",
    "paths",
    "ports",
    "supervisor",
    "watchdog",
]
