class ProvisioningError(Exception):
    pass


class FatalPrerequisite(ProvisioningError):
    """Something the rest of the workflow cannot do without is missing."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Required dependency '{name}' is unavailable: {reason}")
        self.name = name
        self.reason = reason


class MethodFailed(ProvisioningError):
    """One install method did not work out; the caller decides what that means."""


class UnsupportedPlatform(MethodFailed):
    pass


class TransientNetwork(MethodFailed):
    pass
