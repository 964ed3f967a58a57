"""Custom exceptions for the RBD volume plugin."""


class VolumeRbdException(Exception):
    """Base exception for RBD volume plugin errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(VolumeRbdException):
    """Missing, unknown or malformed volume option."""

    pass


class VolumeNotFound(VolumeRbdException):
    """No volume state is recorded under the requested name."""

    pass


class ClusterConnectionError(VolumeRbdException):
    """Failed to reach the Ceph cluster or pool."""

    pass


class ClusterOperationError(VolumeRbdException):
    """An rbd image operation failed on the cluster."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class DeviceError(VolumeRbdException):
    """Mapping, formatting, mounting or unmapping failed on this host."""

    pass


class StateStoreError(VolumeRbdException):
    """The local volume state could not be read or written."""

    pass
