"""Pytest fixtures for mailwarden tests."""

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from mailwarden.config import AccountConfig
from mailwarden.logging import reset_logging, setup_logging
from mailwarden.mail.errors import FolderNotFoundError
from mailwarden.mail.gateway import Credentials, FolderHandle, MailboxGateway
from mailwarden.mail.messages import Message, MessageFlag
from mailwarden.storage.database import IdempotencyStore

NEWSLETTER_RAW = (
    b"From: Promo Team <promo@newsletter.com>\r\n"
    b"To: me@example.com\r\n"
    b"Subject: Weekly Digest\r\n"
    b"Message-ID: <digest-42@newsletter.com>\r\n"
    b"\r\n"
    b"This week's highlights. Click here to unsubscribe.\r\n"
)


class FakeGateway(MailboxGateway):
    """In-memory mailbox that records every mutating call."""

    def __init__(self, account: str = "work") -> None:
        self.account = account
        self.folders: dict[str, dict[str, Message]] = {"INBOX": {}}
        self.mutations: list[tuple] = []
        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.credentials: Credentials | None = None

        # Failure injection
        self.fail_connect: Exception | None = None
        self.fail_auth: Exception | None = None
        self.fetch_errors: dict[str, list[Exception]] = {}
        self.flag_errors: list[Exception] = []
        self.uncreatable: set[str] = set()
        self.move_returns_identifier = True
        self.append_returns_identifier = True
        self._next_uid = 1000

    def add(self, message: Message) -> Message:
        self.folders.setdefault(message.folder, {})[message.identifier] = message
        return message

    def message(self, folder: str, identifier: str) -> Message:
        return self.folders[folder][identifier]

    # MailboxGateway

    def connect(self, host: str, port: int, use_tls: bool = True) -> None:
        self.connect_count += 1
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connected = True

    def authenticate(self, credentials: Credentials) -> None:
        if self.fail_auth is not None:
            raise self.fail_auth
        self.credentials = credentials

    def open_folder(self, path: str, read_write: bool = True) -> FolderHandle:
        if path not in self.folders:
            raise FolderNotFoundError(path, account=self.account)
        return FolderHandle(path=path, read_write=read_write)

    def search_unprocessed(self, folder: FolderHandle) -> list[str]:
        return [
            identifier
            for identifier, msg in self.folders[folder.path].items()
            if MessageFlag.DELETED not in msg.flags
        ]

    def fetch_message(self, folder: FolderHandle, identifier: str) -> Message:
        errors = self.fetch_errors.get(identifier)
        if errors:
            raise errors.pop(0)
        return self.folders[folder.path][identifier]

    def move(self, folder: FolderHandle, identifier: str, destination: str) -> str | None:
        msg = self.folders[folder.path].pop(identifier)
        self.folders.setdefault(destination, {})[identifier] = replace(msg, folder=destination)
        self.mutations.append(("move", identifier, destination))
        return identifier if self.move_returns_identifier else None

    def append(self, folder_path: str, message: Message) -> str | None:
        self._next_uid += 1
        identifier = str(self._next_uid)
        self.folders.setdefault(folder_path, {})[identifier] = replace(
            message, identifier=identifier, folder=folder_path
        )
        self.mutations.append(("append", folder_path, identifier))
        return identifier if self.append_returns_identifier else None

    def _update_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag], add: bool
    ) -> None:
        if self.flag_errors:
            raise self.flag_errors.pop(0)
        flags = frozenset(flags)
        msg = self.folders[folder.path][identifier]
        new_flags = msg.flags | flags if add else msg.flags - flags
        self.folders[folder.path][identifier] = replace(msg, flags=new_flags)
        self.mutations.append(("set_flags" if add else "clear_flags", identifier, flags))

    def set_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        self._update_flags(folder, identifier, flags, add=True)

    def clear_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        self._update_flags(folder, identifier, flags, add=False)

    def expunge(self, folder: FolderHandle) -> None:
        messages = self.folders[folder.path]
        for identifier in [i for i, m in messages.items() if MessageFlag.DELETED in m.flags]:
            del messages[identifier]
        self.mutations.append(("expunge", folder.path))

    def folder_exists(self, path: str) -> bool:
        return path in self.folders

    def create_folder(self, path: str) -> None:
        if path in self.uncreatable:
            raise FolderNotFoundError(path, account=self.account)
        self.folders[path] = {}
        self.mutations.append(("create_folder", path))

    def disconnect(self) -> None:
        self.connected = False
        self.disconnect_count += 1


@pytest.fixture(autouse=True)
def isolated_logging(tmp_path):
    """Send log files to a temp directory and reset handlers afterwards."""
    setup_logging(log_dir=tmp_path / "logs")
    yield
    reset_logging()


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 7, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def newsletter_message(now) -> Message:
    """Unread newsletter in the INBOX of the work account."""
    return Message(
        identifier="42",
        folder="INBOX",
        subject="Weekly Digest",
        from_addresses=("promo@newsletter.com",),
        to_addresses=("me@example.com",),
        body="This week's highlights. Click here to unsubscribe.",
        size=len(NEWSLETTER_RAW),
        received=now,
        message_id_header="<digest-42@newsletter.com>",
        raw=NEWSLETTER_RAW,
    )


@pytest.fixture
def invoice_message(now) -> Message:
    """Read message with an attachment."""
    return Message(
        identifier="41",
        folder="INBOX",
        subject="Invoice #2024-07",
        from_addresses=("billing@vendor.example",),
        reply_to_addresses=("accounts@vendor.example",),
        to_addresses=("me@example.com",),
        cc_addresses=("finance@example.com",),
        body="Please find the invoice attached.",
        flags=frozenset({MessageFlag.SEEN}),
        has_attachment=True,
        size=250 * 1024,
        received=now,
        raw=b"Subject: Invoice #2024-07\r\n\r\nPlease find the invoice attached.\r\n",
    )


@pytest.fixture
def gateway(newsletter_message) -> FakeGateway:
    gw = FakeGateway("work")
    gw.add(newsletter_message)
    return gw


@pytest.fixture
def store(tmp_path) -> IdempotencyStore:
    return IdempotencyStore(tmp_path / "state" / "mailwarden.db")


@pytest.fixture
def work_account() -> AccountConfig:
    return AccountConfig(
        name="work",
        host="imap.work.example",
        username="me@work.example",
        password="secret",
        inter_action_delay_ms=0,
        retry_delay_seconds=0,
    )


@pytest.fixture
def personal_account() -> AccountConfig:
    return AccountConfig(
        name="personal",
        host="imap.home.example",
        username="me@home.example",
        password="secret",
        inter_action_delay_ms=0,
        retry_delay_seconds=0,
    )


@pytest.fixture
def make_gateway():
    """Factory for additional in-memory gateways (e.g. transfer targets)."""
    return FakeGateway
