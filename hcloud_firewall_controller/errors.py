class ControllerError(Exception):
    """Base class for all errors raised by the controller"""


class ConfigurationError(ControllerError):
    """Invalid configuration, detected once at startup"""


class DiscoveryFailure(ControllerError):
    """The public address of one address family could not be determined"""

    def __init__(self, family, reason):
        self.family = family
        self.reason = reason
        super().__init__(f"{family} address discovery failed: {reason}")


class ApiFailure(ControllerError):
    """A Hetzner Cloud API call failed

    ``stage`` is one of ``lookup``, ``create`` or ``apply``.
    """

    def __init__(self, stage, reason):
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage} failed: {reason}")
