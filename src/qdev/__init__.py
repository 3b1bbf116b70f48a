"""Supplemental code context retrieval and feature-dev sessions."""

from .config import ContextConfig, SessionConfig

__all__ = ["ContextConfig", "SessionConfig"]
