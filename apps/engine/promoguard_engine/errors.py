"""Exception hierarchy for the bot detection pipeline."""

from typing import Optional


class PromoguardError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PromoguardError, ValueError):
    """Raised when thresholds or policies are inconsistent."""


class SampleValidationError(PromoguardError):
    """A single engagement sample was malformed or belonged to another key."""

    def __init__(self, message: str, raw: Optional[dict] = None, errors: Optional[list] = None):
        super().__init__(message)
        self.raw = raw or {}
        self.errors = errors or []


class LedgerWriteError(PromoguardError):
    """A ledger store failed to persist an entry."""


class LedgerUnavailableError(PromoguardError):
    """The ledger store cannot be read; reports and history are unavailable."""


class ChannelDeliveryError(PromoguardError):
    """A notification channel failed to deliver a payload."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class ActionExecutionError(PromoguardError):
    """An external action (ban, payout hold, monitoring) could not be executed."""


class BanExecutionError(ActionExecutionError):
    """A ban could not be executed. Always surfaced to the caller."""

    def __init__(self, message: str, analysis=None, action_result=None):
        super().__init__(message)
        self.analysis = analysis
        self.action_result = action_result


class SampleStoreError(PromoguardError):
    """The sample store could not be read or written."""


class AlertStoreError(PromoguardError):
    """The alert window store could not be read or written."""


class AlertNotFoundError(PromoguardError, KeyError):
    """No alert with the given id exists in the ledger."""
