# ABOUTME: Custom exception hierarchy for aip-replicate packaging and restore
# ABOUTME: Provides specialized exceptions with recovery hints for each failure class
"""Custom exceptions for aip-replicate"""


class ReplicateError(Exception):
    """Base exception for all aip-replicate errors"""

    def __init__(self, message: str, recovery_hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.recovery_hint = recovery_hint

    def __str__(self):
        base = super().__str__()
        if self.recovery_hint:
            return f"{base}\nHint: {self.recovery_hint}"
        return base


class ConfigError(ReplicateError):
    """Configuration related errors"""

    pass


class PreconditionError(ReplicateError):
    """A package build found leftovers of another build in its target directory"""

    pass


class UnsupportedOperationError(ReplicateError):
    """Requested packaging feature is not supported"""

    pass


class PackageIOError(ReplicateError):
    """Reading, writing or copying package content failed"""

    pass


class PackageFormatError(ReplicateError):
    """Archive or metadata document could not be read"""

    pass


class ObjectNotFoundError(ReplicateError):
    """Live object is not present in the host repository"""

    def __init__(self, identifier: str, recovery_hint: str | None = None):
        super().__init__(f"Object not found: {identifier}", recovery_hint)
        self.identifier = identifier


class ReplicaNotFoundError(ReplicateError):
    """Replica key is not present in the replica store"""

    def __init__(self, group: str, key: str):
        super().__init__(
            f"Replica not found: {group}/{key}",
            recovery_hint="Transmit the object before fetching or restoring it",
        )
        self.group = group
        self.key = key


class MissingParentError(ReplicateError):
    """Restore target's owner is not present in the live repository"""

    def __init__(self, identifier: str, parent_identifier: str):
        super().__init__(
            f"Parent {parent_identifier} of {identifier} does not exist",
            recovery_hint="Restore the parent first or enable skip_if_parent_missing",
        )
        self.identifier = identifier
        self.parent_identifier = parent_identifier
