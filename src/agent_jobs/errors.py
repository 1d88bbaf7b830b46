"""Custom exceptions for agent job operations.

This module defines a hierarchy of exceptions for the failure scenarios that are
not expected outcomes: invalid caller input and I/O faults. Expected outcomes
such as a missing job or a poll timeout are returned as values instead.
"""


class AgentJobsError(Exception):
    """Base exception for all agent-jobs errors."""


class ValidationError(AgentJobsError):
    """Raised when caller input is missing, ambiguous, or malformed."""


class LaunchError(AgentJobsError):
    """Raised when a job cannot be started before its record exists."""


class StateError(AgentJobsError):
    """Raised when state files cannot be read, parsed, or written."""


class ConfigError(AgentJobsError):
    """Raised when configuration is invalid or cannot be loaded."""
