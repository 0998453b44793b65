"""Exceptions raised by the dev server supervisor."""


class DevServerError(Exception):
    """Base error for dev server operations."""

    pass


class StartupValidationError(DevServerError):
    """The bundler cannot be launched because a prerequisite is missing."""

    pass


class ConnectivityError(DevServerError):
    """A bundler that was expected to be running does not answer."""

    def __init__(self, message: str, port: int):
        super().__init__(message)
        self.port = port


class ProcessExitedError(DevServerError):
    """The bundler process exited before reporting a build result."""

    def __init__(self, message: str, returncode=None):
        super().__init__(message)
        self.returncode = returncode


class ForwardingError(DevServerError):
    """An I/O error occurred while proxying a request to the bundler."""

    pass
