"""Mailbox error classes raised by gateway implementations."""


class MailboxError(Exception):
    """Raised when a mailbox operation fails."""

    def __init__(self, message: str, account: str | None = None) -> None:
        super().__init__(message)
        self.account = account


class TransientMailboxError(MailboxError):
    """Raised for failures worth retrying (timeouts, dropped connections)."""


class ConnectionFailedError(MailboxError):
    """Raised when the mailbox server cannot be reached."""


class AuthenticationError(MailboxError):
    """Raised when the server rejects the account credentials."""


class FolderNotFoundError(MailboxError):
    """Raised when a folder does not exist and cannot be created."""

    def __init__(self, folder: str, account: str | None = None) -> None:
        super().__init__(f'Folder "{folder}" not found', account=account)
        self.folder = folder
