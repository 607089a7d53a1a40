class ConfigError(ValueError):
    """Invalid construction parameters for a Network"""


class ResolutionError(OSError):
    """No usable address could be found for a hostname"""


class DialError(ConnectionError):
    """Every candidate address failed to connect.

    The error of the last attempt is available as ``__cause__``.
    """
