"""Action definitions executed when a rule matches."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TARGET_FOLDER = "INBOX"


class _BaseAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        """Short human-readable form used in logs and results."""
        return self.type  # type: ignore[attr-defined]


class MoveToFolder(_BaseAction):
    """Move the message to a folder in the same account."""

    type: Literal["move_to_folder"] = "move_to_folder"
    folder: str = Field(min_length=1, description="Destination folder path")

    def describe(self) -> str:
        return f"move_to_folder({self.folder})"


class MoveToAccount(_BaseAction):
    """Transfer the message to a folder of another account."""

    type: Literal["move_to_account"] = "move_to_account"
    target_account: str = Field(min_length=1)
    target_folder: str = Field(default=DEFAULT_TARGET_FOLDER, min_length=1)
    mark_processed: bool = Field(
        default=True, description="Delete the source copy after the transfer"
    )

    def describe(self) -> str:
        return f"move_to_account({self.target_account}/{self.target_folder})"


class Delete(_BaseAction):
    type: Literal["delete"] = "delete"


class MarkRead(_BaseAction):
    type: Literal["mark_read"] = "mark_read"


class MarkUnread(_BaseAction):
    type: Literal["mark_unread"] = "mark_unread"


class AddFlag(_BaseAction):
    """Set a system flag; the name is checked when the action runs."""

    type: Literal["add_flag"] = "add_flag"
    flag: str

    def describe(self) -> str:
        return f"add_flag({self.flag})"


class RemoveFlag(_BaseAction):
    type: Literal["remove_flag"] = "remove_flag"
    flag: str

    def describe(self) -> str:
        return f"remove_flag({self.flag})"


Action = Annotated[
    Union[MoveToFolder, MoveToAccount, Delete, MarkRead, MarkUnread, AddFlag, RemoveFlag],
    Field(discriminator="type"),
]
