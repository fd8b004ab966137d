"""
Custom Exception Classes for reactd

Hierarchical exception structure for the action primitives.
Primitives raise these internally and report a boolean at their boundary.
"""


class ReactdError(Exception):
    """Base exception for all reactd errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(ReactdError):
    """Configuration-related errors"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}")


class ActionError(ReactdError):
    """Failure of a single action invocation"""

    def __init__(self, message: str, action: str | None = None):
        self.action = action
        super().__init__(message)


class BusError(ActionError):
    """Init system control bus errors (connect, call or reply parsing)"""

    def __init__(self, message: str, method: str | None = None):
        self.method = method
        super().__init__(message, action=method)


class MetricsError(ActionError):
    """Metrics endpoint I/O or protocol errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(message, action="metrics")


class MetricsTimeoutError(MetricsError):
    """Timeout budget exhausted during a metrics exchange"""
