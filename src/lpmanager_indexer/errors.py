"""Base exception shared by every failure an ingestion run can report."""


class IndexerError(Exception):
    """Base exception for failures surfaced in a run outcome.

    ``retryable`` tells the scheduler whether re-invoking the whole run may
    succeed without operator intervention.
    """

    retryable: bool = False
