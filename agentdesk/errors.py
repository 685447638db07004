"""Domain errors shared by the service layers and mapped by the routers."""

from __future__ import annotations


class NotFoundError(LookupError):
    """Base class for lookups that found nothing."""


class AgentNotFoundError(NotFoundError):
    """Raised when an installed agent could not be located."""


class TemplateNotFoundError(NotFoundError):
    """Raised when the registry has no template with the requested id."""


class ConversationNotFoundError(NotFoundError):
    """Raised when a conversation could not be located."""


class TurnNotFoundError(NotFoundError):
    """Raised when a recorded conversation turn could not be located."""


class AgentAlreadyInstalledError(RuntimeError):
    """Raised when a template is installed twice for the same account."""


class PremiumRequiredError(RuntimeError):
    """Raised when a premium template is installed without a premium plan."""


class AssignmentInvariantError(RuntimeError):
    """Raised when a conversation would end up with two active assignments."""


class InvalidAssignmentError(ValueError):
    """Raised when an agent cannot take a conversation (inactive, wrong account)."""


class AgentInactiveError(RuntimeError):
    """Raised when an inactive agent is asked to generate a reply."""


class FeedbackAlreadyRecordedError(RuntimeError):
    """Raised when helpfulness feedback is submitted twice for one turn."""
