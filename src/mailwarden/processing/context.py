"""Per-message processing state and result models."""

from dataclasses import dataclass

from pydantic import BaseModel, Field

from mailwarden.mail.gateway import FolderHandle, MailboxGateway

MAX_CHAIN_DEPTH = 3


@dataclass
class ProcessingContext:
    """
    Scratch state for one message.

    Owned by a single AccountProcessor for the duration of one message and
    never shared between messages.
    """

    account: str
    gateway: MailboxGateway
    folder: FolderHandle
    identifier: str
    chain_depth: int = 0
    dry_run: bool = False
    removed: bool = False

    def relocate(self, folder: str, identifier: str | None) -> None:
        """Point the context at the message's new location after a move."""
        if identifier is None:
            self.removed = True
            return
        self.folder = FolderHandle(path=folder, read_write=True)
        self.identifier = identifier


class ActionResult(BaseModel):
    """Outcome of executing one action."""

    action: str = Field(description="Action that was executed")
    success: bool = Field(default=True, description="Whether the action succeeded")
    detail: str = Field(default="", description="What the action did or would do")
    error: str | None = Field(default=None, description="Error message if failed")
    dry_run: bool = Field(default=False, description="Whether this was a dry run")
