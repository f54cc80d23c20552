"""Clients for external collaborators."""

from __future__ import annotations

from .completion import Completion, CompletionService, CompletionTransport, HTTPCompletionClient

__all__ = [
    "Completion",
    "CompletionService",
    "CompletionTransport",
    "HTTPCompletionClient",
]
