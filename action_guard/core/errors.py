"""
Error taxonomy.

Most failures in the pipeline are converted into fail-safe values instead
of being raised; ``ErrorKind`` records on those values which kind of
failure produced them. The exceptions below are the ones that do travel.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of failure surfaced on results and outcomes."""
    VALIDATION = "validation"
    PARSE = "parse"
    TRANSPORT = "transport"
    STATE = "state"
    EXECUTION = "execution"
    AUTHORIZATION = "authorization"


class ActionGuardError(Exception):
    """Base class for errors raised by this package."""


class MalformedReferenceError(ActionGuardError, ValueError):
    """A contact or organization reference on an action cannot be parsed."""


class ActionNotAuthorizedError(ActionGuardError):
    """The agent is not allowed to perform the action. Never retried."""


class ChannelNotConfiguredError(ActionGuardError):
    """No executor is registered for the action's channel. Never retried."""
