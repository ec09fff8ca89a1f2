"""
Exception taxonomy for the extraction pipeline.

Stages catch these and turn them into tagged StageResult values; only the
collaborator clients and the acquisition strategies raise them.
"""

from typing import List, Optional


class TradeWizardError(Exception):
    """Base class for pipeline errors."""


class FetchFailure(TradeWizardError):
    """Every acquisition strategy was exhausted for a URL."""

    def __init__(self, url: str, message: str, attempts: Optional[List] = None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts or []


class ParseFailure(TradeWizardError):
    """Collaborator output could not be read as the expected JSON shape."""


class CollaboratorFailure(TradeWizardError):
    """An external service (completion model or lookup) failed or returned garbage."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class DeadlineExceeded(TradeWizardError):
    """The per-URL time budget ran out."""
