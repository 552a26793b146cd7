"""Custom exceptions for the donor attribution core."""


class DonorCoreError(Exception):
    """Base exception for all donor core errors."""


class TouchpointOrderError(DonorCoreError, ValueError):
    """Raised when a donor journey is not ordered by occurred_at."""

    def __init__(self, donor_id: str | None, position: int):
        self.donor_id = donor_id
        self.position = position
        super().__init__(
            f"Touchpoints for donor={donor_id} are out of order at position {position}"
        )


class UnknownAttributionModelError(DonorCoreError, ValueError):
    """Raised when an allocation is requested for an unsupported model."""

    def __init__(self, model: object):
        self.model = model
        super().__init__(f"Unknown attribution model: {model!r}")


class UnknownMatchTypeError(DonorCoreError, ValueError):
    """Raised when a mapping carries a match_type outside the known set."""

    def __init__(self, match_type: object):
        self.match_type = match_type
        super().__init__(f"Unknown attribution match_type: {match_type!r}")


class UnknownMetricError(DonorCoreError, KeyError):
    """Raised when a metric name is missing from the metric contract."""

    def __init__(self, metric: str):
        self.metric = metric
        super().__init__(f"Metric not defined in contract: {metric}")
