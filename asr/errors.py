from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for errors raised by the scope reconciler."""


class PolicyLoadError(ReconcilerError):
    """A reload was rejected; the previously committed policy stays active."""


class ConfigParseError(PolicyLoadError):
    pass


class ConfigValidationError(PolicyLoadError):
    pass


class MatchConfigurationError(ReconcilerError):
    """A criterion cannot be converged as written (e.g. pod labels mixed with owner names)."""


class ActuationError(ReconcilerError):
    """An orchestration API call failed for one target resource."""

    def __init__(self, message: str, kind: str = "", namespace: str = "", name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name

    @property
    def target(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


class SubscriptionError(ReconcilerError):
    """The change-event channel delivered an error event."""


class ConvergenceCancelled(ReconcilerError):
    pass
