"""
Chat layer: the line protocol, per-client sessions and the shared registry.
"""

from .protocol import Command, CommandKind, parse_line
from .registry import Registry
from .session import Session, SessionState

__all__ = [
    "Command",
    "CommandKind",
    "parse_line",
    "Registry",
    "Session",
    "SessionState",
]
