"""
Exceptions raised by the call intake service.
"""


class CallIntakeError(Exception):
    """Base class for all call intake errors."""


class ConfigurationError(CallIntakeError):
    """Raised when a component is missing a collaborator or a setting."""


class ProviderError(CallIntakeError):
    """Raised when an external speech or language provider fails."""


class TranscriptionError(ProviderError):
    """Speech-to-text failed, or the audio could not be submitted."""


class ExtractionError(ProviderError):
    """The task extraction request itself failed."""
