"""
Exceptions raised across the anomaly pipeline.

Only ConfigurationError is fatal. The rest describe per-site or per-event
failures that callers catch, log and count.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(PipelineError):
    """A required setting is missing or malformed"""


class SiteSkipped(PipelineError):
    """A site cannot be evaluated this tick"""

    reason = "error"


class DataUnavailable(SiteSkipped):
    """The aggregate table has no usable view count for a bucket"""

    reason = "data_unavailable"


class BaselineUndefined(SiteSkipped):
    """Not enough comparable history to compute a baseline"""

    reason = "baseline_undefined"


class StatusStoreError(SiteSkipped):
    """The persisted anomaly status could not be read"""

    reason = "status_unavailable"


class StatusWriteFailed(StatusStoreError):
    """A status transition could not be persisted"""

    reason = "status_write_failed"


class PublishFailure(PipelineError):
    """The event bus rejected or timed out on a publish"""


class NotificationFailure(PipelineError):
    """The notification channel did not accept an alert"""
