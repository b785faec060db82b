"""Exception hierarchy for AgentLoop.

These are raised only at inner seams. Tool handlers and the turn controller
convert them into result envelopes before anything reaches a caller.
"""

from __future__ import annotations


class AgentLoopError(Exception):
    """Base class for AgentLoop errors."""

    pass


class ProviderError(AgentLoopError):
    """Raised when the streaming provider fails or returns an error status."""

    pass


class InvalidTransitionError(AgentLoopError):
    """Raised when a task status would move backwards."""

    pass


class CommandBlockedError(AgentLoopError):
    """Raised when a command is blocked by policy."""

    pass


class PersonaError(AgentLoopError):
    """Raised when a persona cannot be created, edited or removed."""

    pass
