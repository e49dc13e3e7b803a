"""
Error taxonomy for the sweep.

  - ConfigError and subclasses: configuration defects, always fatal
  - BrokerError: a broker operation was refused or timed out
  - ChannelClosed: the peer actor is gone
  - SweepAborted: an actor thread died, the whole run is fatal
"""


class SweepError(Exception):
    """Base class for every error raised by mqtt_sweep."""


# --------------------------------------------------------------------------- #
# Configuration
# --------------------------------------------------------------------------- #
class ConfigError(SweepError):
    """The configuration is unusable. Never retried."""


class ConfigFileError(ConfigError):
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"could not read file: {filename}")


class MissingPropertyError(ConfigError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"property does not exist in configuration: {key}")


class InvalidPropertyError(ConfigError):
    def __init__(self, key: str, reason: str = ""):
        self.key = key
        msg = f"invalid value for configuration property: {key}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class TopicTemplateError(ConfigError):
    """A topic template is absent or lacks a required placeholder."""


# --------------------------------------------------------------------------- #
# Runtime
# --------------------------------------------------------------------------- #
class BrokerError(SweepError):
    """A connect / publish / subscribe call against the broker failed."""


class ChannelClosed(SweepError):
    """Raised by ControlChannel once the other side has gone away."""


class SweepAborted(SweepError):
    """One of the actor threads terminated with an unexpected exception."""

    def __init__(self, role: str, cause: BaseException):
        self.role = role
        self.cause = cause
        super().__init__(f"{role} aborted: {cause!r}")
