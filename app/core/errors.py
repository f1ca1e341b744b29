from typing import Optional


class SizingError(Exception):
    """Base class for cluster sizing errors."""


class ConfigurationInvalid(SizingError):
    """The sizing configuration breaks one of the partition or schema rules.

    ``rule`` is a stable identifier suitable for a status condition reason.
    """

    NO_SIZES = "NoSizes"
    DUPLICATE_NAME = "DuplicateName"
    INVERTED_RANGE = "InvertedRange"
    MISSING_ZERO_LOWER_BOUND = "MissingZeroLowerBound"
    MULTIPLE_ZERO_LOWER_BOUND = "MultipleZeroLowerBound"
    MISSING_OPEN_UPPER_BOUND = "MissingOpenUpperBound"
    MULTIPLE_OPEN_UPPER_BOUND = "MultipleOpenUpperBound"
    GAP = "Gap"
    OVERLAP = "Overlap"
    SCHEMA_VIOLATION = "SchemaViolation"
    INVALID_NAME = "InvalidName"

    def __init__(self, rule: str, message: str):
        super().__init__(f"{rule}: {message}")
        self.rule = rule
        self.message = message


class UnknownCurrentSize(SizingError):
    def __init__(self, cluster_id: str, size: Optional[str]):
        super().__init__(f"cluster {cluster_id} has size {size!r} which is not in the active configuration")
        self.cluster_id = cluster_id
        self.size = size


class CollaboratorFetchFailure(SizingError):
    def __init__(self, cluster_id: str, reason: str):
        super().__init__(f"node count for cluster {cluster_id} unavailable: {reason}")
        self.cluster_id = cluster_id
        self.reason = reason


class ClusterNotFound(SizingError):
    def __init__(self, cluster_id: str):
        super().__init__(f"cluster {cluster_id} is not managed")
        self.cluster_id = cluster_id
