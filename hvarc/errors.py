"""Exception types raised by hvarc.

Shell command failures are left to Luigi, which marks the task as failed; the
classes below cover the conditions hvarc detects on its own.
"""


class HvarcError(Exception):
    """Base class for hvarc errors."""


class ConfigurationError(HvarcError, ValueError):
    """Unsupported track/build combination or missing backend resource.

    Raised before any stage starts.
    """


class BackendInvocationError(HvarcError, RuntimeError):
    """An external calling, phasing, or haplotagging backend did not succeed."""


class PartitionViolationError(HvarcError, RuntimeError):
    """A contig was accounted for twice or not at all during aggregation."""


class InvalidTransitionError(HvarcError, RuntimeError):
    """A sample run was moved along an edge the state machine does not have."""
