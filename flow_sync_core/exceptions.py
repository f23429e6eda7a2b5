"""
Exceptions for the Flow Sync Core.

Only tokenization failures and collaborator failures ever reach the user.
Recognition gaps, generation gaps and handle mismatches are absorbed where
they happen and logged at debug level.
"""

from typing import Optional, Any, Dict


class FlowSyncError(Exception):
    """Base exception for all synchronization errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ParseError(FlowSyncError):
    """Raised when source text cannot be turned into IR nodes at all."""

    def __init__(self, message: str, offset: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.offset = offset

    def __str__(self) -> str:
        return f"{self.message} (at offset {self.offset})"


class TokenizeError(ParseError):
    """Raised when the lexer cannot tokenize the source text."""
    pass


class ValidationError(FlowSyncError):
    """Raised when an IR node list or visual graph breaks an invariant."""
    pass


class CollaboratorFailure(FlowSyncError):
    """Raised when persistence, diagnostics or layout collaborators fail."""

    def __init__(self, message: str, collaborator: str, cause: Optional[Exception] = None):
        super().__init__(message, {'collaborator': collaborator})
        self.collaborator = collaborator
        self.cause = cause
