"""
=============================================================================
CHAT PROTOCOL
=============================================================================

The wire protocol is plain text, one message per line.

    Server → client, on connect:     Please, enter a nickname:
    Client → server, first line:     <nickname>
    Server → everyone:               <nickname> joined the chat!

    Client → server, afterwards:
        /nick <new>   → everyone: "<old> renamed themselves to <new>"
                        sender:   "Nickname successfully changed to <new>"
        /nick         → sender:   "No nickname was provided."
        /quit...      → everyone: "<nickname> left the chat."  (then closed)
        anything else → everyone: "<nickname>: <line>"

This module turns incoming lines into Command objects and builds the
outgoing lines. It does no I/O.

=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


NICK_COMMAND = "/nick"
QUIT_COMMAND = "/quit"

NICKNAME_PROMPT = "Please, enter a nickname:"
NO_NICKNAME_PROVIDED = "No nickname was provided."


class CommandKind(Enum):
    MESSAGE = "message"
    NICK = "nick"
    QUIT = "quit"


@dataclass(frozen=True)
class Command:
    """
    One parsed client line.

    Attributes:
        kind: What the line asks for.
        text: The original line (broadcast verbatim for MESSAGE).
        argument: New nickname for NICK, None if none was given.
    """
    kind: CommandKind
    text: str
    argument: Optional[str] = None


def parse_line(line: str) -> Command:
    """
    Classify a line from an active client.

    "/nick" is matched as a whole word, so "/nickname" is an ordinary
    message. "/quit" is matched as a prefix: "/quit", "/quit now" and
    "/quitter" all quit.

    The nickname is everything after the first space, kept verbatim,
    whitespace included. Only "/nick" and "/nick " leave argument as None.

    >>> parse_line("/nick Bob")
    Command(kind=<CommandKind.NICK: 'nick'>, text='/nick Bob', argument='Bob')
    >>> parse_line("/nick").argument is None
    True
    >>> parse_line("/nick   ").argument
    '  '
    >>> parse_line("hello").kind
    <CommandKind.MESSAGE: 'message'>
    """
    if line == NICK_COMMAND or line.startswith(NICK_COMMAND + " "):
        parts = line.split(" ", 1)
        argument = parts[1] if len(parts) == 2 and parts[1] else None
        return Command(CommandKind.NICK, line, argument)

    if line.startswith(QUIT_COMMAND):
        return Command(CommandKind.QUIT, line)

    return Command(CommandKind.MESSAGE, line)


# =============================================================================
# OUTGOING LINES
# =============================================================================

def joined(nickname: str) -> str:
    return f"{nickname} joined the chat!"


def left(nickname: str) -> str:
    return f"{nickname} left the chat."


def renamed(old: str, new: str) -> str:
    return f"{old} renamed themselves to {new}"


def nickname_changed(new: str) -> str:
    return f"Nickname successfully changed to {new}"


def chat_message(nickname: str, text: str) -> str:
    return f"{nickname}: {text}"
