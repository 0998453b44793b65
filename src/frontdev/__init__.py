"""frontdev - Frontend dev-server supervisor and proxy.

This package starts and watches an external frontend bundler process
(webpack-dev-server and friends), waits for its first build, and forwards
browser asset requests to it during development.

Main modules:
    - cli: Command-line interface (frontdev command)
    - core: Process supervision, output monitoring, port handling
    - server: Proxy gateway, live reload and the front HTTP server
"""

__version__ = "0.1.0"
