"""Exceptions raised by Project Pulse services."""


class PulseError(Exception):
    """Base exception for pipeline operations."""
    pass


class ProjectNotFoundError(PulseError):
    """Project does not exist."""
    pass


class PromptRunNotFoundError(PulseError):
    """Prompt run does not exist."""
    pass


class ActionRecordNotFoundError(PulseError):
    """Action record does not exist."""
    pass


class IntegrationJobNotFoundError(PulseError):
    """Integration job does not exist."""
    pass


class InvalidTransitionError(PulseError):
    """State change not allowed from the record's current status."""
    pass


class PromptNotConfiguredError(PulseError):
    """No workflow prompt of the requested type exists."""
    pass


class AIProviderError(PulseError):
    """The AI provider call failed or returned an unusable response."""
    pass


class KnowledgeBaseError(PulseError):
    """Knowledge base lookup failed."""
    pass


class IntegrationError(PulseError):
    """An external system rejected or failed an integration job."""
    pass


class TransientIntegrationError(IntegrationError):
    """Failure worth retrying with backoff (timeouts, 5xx, network)."""
    pass


class PermanentIntegrationError(IntegrationError):
    """Failure that will not succeed on retry (bad payload, unsupported operation)."""
    pass
