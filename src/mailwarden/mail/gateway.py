"""Abstract mailbox gateway consumed by the processing core."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

from mailwarden.mail.messages import Message, MessageFlag


@dataclass(frozen=True)
class FolderHandle:
    """An opened folder on a mailbox connection."""

    path: str
    read_write: bool = True
    uid_validity: str | None = None


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for mailbox login."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class MailboxGateway(ABC):
    """
    Stateful connection to one mailbox account.

    Identifiers returned by a gateway must be stable across sessions for the
    same message; idempotent processing depends on it.
    """

    @abstractmethod
    def connect(self, host: str, port: int, use_tls: bool = True) -> None:
        """Open the network connection."""
        ...

    @abstractmethod
    def authenticate(self, credentials: Credentials) -> None:
        """Log in to the account."""
        ...

    @abstractmethod
    def open_folder(self, path: str, read_write: bool = True) -> FolderHandle:
        """Select a folder for subsequent operations."""
        ...

    @abstractmethod
    def search_unprocessed(self, folder: FolderHandle) -> list[str]:
        """List candidate identifiers in the folder, oldest first."""
        ...

    @abstractmethod
    def fetch_message(self, folder: FolderHandle, identifier: str) -> Message:
        """Fetch a message snapshot without altering its flags."""
        ...

    @abstractmethod
    def move(self, folder: FolderHandle, identifier: str, destination: str) -> str | None:
        """
        Move a message to another folder.

        Returns:
            The identifier in the destination folder, when the server reports it.
        """
        ...

    @abstractmethod
    def append(self, folder_path: str, message: Message) -> str | None:
        """
        Append a serialized message to a folder.

        Returns:
            The identifier of the new copy, when the server reports it.
        """
        ...

    @abstractmethod
    def set_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        ...

    @abstractmethod
    def clear_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        ...

    @abstractmethod
    def expunge(self, folder: FolderHandle) -> None:
        """Permanently remove messages flagged as deleted."""
        ...

    @abstractmethod
    def folder_exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def create_folder(self, path: str) -> None:
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection; safe to call more than once."""
        ...
