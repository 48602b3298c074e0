"""Mailbox access layer."""

from mailwarden.mail.errors import (
    AuthenticationError,
    ConnectionFailedError,
    FolderNotFoundError,
    MailboxError,
    TransientMailboxError,
)
from mailwarden.mail.gateway import Credentials, FolderHandle, MailboxGateway
from mailwarden.mail.messages import Message, MessageFlag, parse_message

__all__ = [
    "AuthenticationError",
    "ConnectionFailedError",
    "Credentials",
    "FolderHandle",
    "FolderNotFoundError",
    "MailboxError",
    "MailboxGateway",
    "Message",
    "MessageFlag",
    "TransientMailboxError",
    "parse_message",
]
