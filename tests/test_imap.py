"""Tests for the imaplib gateway against a scripted IMAP client."""

import imaplib
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from mailwarden.mail.errors import (
    AuthenticationError,
    ConnectionFailedError,
    FolderNotFoundError,
    MailboxError,
    TransientMailboxError,
)
from mailwarden.mail.gateway import Credentials, FolderHandle
from mailwarden.mail.imap import (
    ImapGateway,
    decode_imap_response,
    parse_uid_search_data,
    quote_mailbox_name,
)
from mailwarden.mail.messages import MessageFlag, parse_message

RAW = b"From: promo@newsletter.com\r\nSubject: Weekly Digest\r\n\r\nhello\r\n"


class ScriptedIMAP:
    """Stands in for imaplib.IMAP4; replies come from ``uid_replies``."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.uid_replies: dict[str, tuple[str, list]] = {}
        self.select_status = "OK"
        self.login_error: Exception | None = None
        self.untagged: dict[str, list] = {"UIDVALIDITY": [b"777"]}
        self.mailboxes = {"INBOX"}
        self.append_reply: tuple[str, list] = ("OK", [b"[APPENDUID 5 1001] APPEND completed"])

    def login(self, user, password):
        self.calls.append(("login", user))
        if self.login_error is not None:
            raise self.login_error
        return "OK", [b"Logged in"]

    def logout(self):
        self.calls.append(("logout",))
        return "BYE", [b""]

    def select(self, mailbox, readonly=False):
        self.calls.append(("select", mailbox, readonly))
        return self.select_status, [b"3"]

    def response(self, code):
        return code, self.untagged.get(code, [None])

    def uid(self, command, *args):
        self.calls.append(("uid", command) + args)
        reply = self.uid_replies.get(command, ("OK", [b""]))
        if isinstance(reply, Exception):
            raise reply
        return reply

    def list(self, directory, pattern):
        name = pattern.strip('"')
        if name in self.mailboxes:
            return "OK", [f'(\\HasNoChildren) "/" "{name}"'.encode()]
        return "OK", [None]

    def create(self, mailbox):
        self.calls.append(("create", mailbox))
        return "OK", [b"CREATE completed"]

    def append(self, mailbox, flags, date_time, message):
        self.calls.append(("append", mailbox, flags, date_time))
        return self.append_reply

    def expunge(self):
        self.calls.append(("expunge",))
        return "OK", [None]


@pytest.fixture
def imap() -> ScriptedIMAP:
    return ScriptedIMAP()


@pytest.fixture
def gateway(imap) -> ImapGateway:
    gw = ImapGateway("work", imap_factory=lambda host, port: imap)
    gw.connect("imap.example.com", 993)
    gw.authenticate(Credentials("me", "secret"))
    return gw


@pytest.fixture
def inbox(gateway) -> FolderHandle:
    return gateway.open_folder("INBOX")


class TestHelpers:
    def test_quote_mailbox_name(self) -> None:
        assert quote_mailbox_name('My "Stuff"') == '"My \\"Stuff\\""'

    def test_parse_uid_search_data(self) -> None:
        assert parse_uid_search_data([b"3 1 2"]) == ["3", "1", "2"]
        assert parse_uid_search_data([b""]) == []
        assert parse_uid_search_data(None) == []

    def test_decode_imap_response(self) -> None:
        assert decode_imap_response([b"one", None, (b"two", b"three")]) == "one | two | three"


class TestConnection:
    """Tests for connect, login and folder selection."""

    def test_connect_failure(self) -> None:
        def refuse(host, port):
            raise ConnectionRefusedError("refused")

        gw = ImapGateway("work", imap_factory=refuse)
        with pytest.raises(ConnectionFailedError):
            gw.connect("imap.example.com", 993)

    def test_login_failure(self, imap) -> None:
        imap.login_error = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        gw = ImapGateway("work", imap_factory=lambda host, port: imap)
        gw.connect("imap.example.com", 993)
        with pytest.raises(AuthenticationError):
            gw.authenticate(Credentials("me", "wrong"))

    def test_not_connected(self) -> None:
        with pytest.raises(MailboxError, match="Not connected"):
            ImapGateway("work").open_folder("INBOX")

    def test_open_folder(self, gateway, imap) -> None:
        handle = gateway.open_folder("INBOX", read_write=False)
        assert handle.uid_validity == "777"
        assert ("select", '"INBOX"', True) in imap.calls

    def test_open_missing_folder(self, gateway, imap) -> None:
        imap.select_status = "NO"
        with pytest.raises(FolderNotFoundError):
            gateway.open_folder("Nope")

    def test_disconnect_is_idempotent(self, gateway, imap) -> None:
        gateway.disconnect()
        gateway.disconnect()
        assert imap.calls.count(("logout",)) == 1


class TestMessages:
    """Tests for search, fetch and mutations."""

    def test_search_qualifies_uids(self, gateway, imap, inbox) -> None:
        imap.uid_replies["SEARCH"] = ("OK", [b"10 2 7"])
        assert gateway.search_unprocessed(inbox) == ["INBOX/2", "INBOX/7", "INBOX/10"]

    def test_fetch(self, gateway, imap, inbox) -> None:
        meta = b'42 (UID 42 FLAGS (\\Seen \\Flagged $Junk) INTERNALDATE "17-Jul-2024 10:00:00 +0000" BODY[] {64}'
        imap.uid_replies["FETCH"] = ("OK", [(meta, RAW), b")"])

        message = gateway.fetch_message(inbox, "INBOX/42")

        assert ("uid", "FETCH", "42", "(FLAGS INTERNALDATE BODY.PEEK[])") in imap.calls
        assert message.identifier == "INBOX/42"
        assert message.subject == "Weekly Digest"
        assert message.flags == frozenset({MessageFlag.SEEN, MessageFlag.FLAGGED})
        assert message.received == datetime(2024, 7, 17, 10, 0, tzinfo=timezone.utc)

    def test_fetch_missing(self, gateway, imap, inbox) -> None:
        imap.uid_replies["FETCH"] = ("OK", [None])
        with pytest.raises(MailboxError, match="not found"):
            gateway.fetch_message(inbox, "INBOX/42")

    def test_abort_is_transient(self, gateway, imap, inbox) -> None:
        imap.uid_replies["FETCH"] = imaplib.IMAP4.abort("socket closed")
        with pytest.raises(TransientMailboxError):
            gateway.fetch_message(inbox, "INBOX/42")

    def test_move_reports_new_uid(self, gateway, imap, inbox) -> None:
        imap.uid_replies["MOVE"] = ("OK", [b"[COPYUID 9 42 7] Moved"])
        assert gateway.move(inbox, "INBOX/42", "Archive") == "Archive/7"

    def test_move_falls_back_to_copy(self, gateway, imap, inbox) -> None:
        imap.uid_replies["MOVE"] = ("BAD", [b"Unknown command"])
        imap.uid_replies["COPY"] = ("OK", [b"[COPYUID 9 42 8] Copied"])

        assert gateway.move(inbox, "INBOX/42", "Archive") == "Archive/8"
        assert ("uid", "STORE", "42", "+FLAGS.SILENT", r"(\Deleted)") in imap.calls
        assert ("expunge",) in imap.calls

    def test_move_without_uidplus(self, gateway, imap, inbox) -> None:
        imap.uid_replies["MOVE"] = ("OK", [b"Done"])
        assert gateway.move(inbox, "INBOX/42", "Archive") is None

    def test_append(self, gateway, imap) -> None:
        message = parse_message(
            "INBOX/42", "INBOX", RAW, flags=frozenset({MessageFlag.SEEN, MessageFlag.DELETED})
        )
        assert gateway.append("Imported", message) == "Imported/1001"
        call = next(c for c in imap.calls if c[0] == "append")
        assert call[1] == '"Imported"'
        assert call[2] == "(\\Seen)"

    def test_append_requires_raw(self, gateway) -> None:
        message = parse_message("INBOX/42", "INBOX", RAW)
        with pytest.raises(MailboxError):
            gateway.append("Imported", replace(message, raw=b""))

    def test_flags(self, gateway, imap, inbox) -> None:
        gateway.set_flags(inbox, "INBOX/42", [MessageFlag.SEEN])
        gateway.clear_flags(inbox, "INBOX/42", [MessageFlag.FLAGGED])
        assert ("uid", "STORE", "42", "+FLAGS.SILENT", "(\\Seen)") in imap.calls
        assert ("uid", "STORE", "42", "-FLAGS.SILENT", "(\\Flagged)") in imap.calls

    def test_store_rejected(self, gateway, imap, inbox) -> None:
        imap.uid_replies["STORE"] = ("NO", [b"Permission denied"])
        with pytest.raises(MailboxError, match="Permission denied"):
            gateway.set_flags(inbox, "INBOX/42", [MessageFlag.SEEN])

    def test_folders(self, gateway, imap) -> None:
        assert gateway.folder_exists("INBOX")
        assert not gateway.folder_exists("Archive")
        gateway.create_folder("Archive")
        assert ("create", '"Archive"') in imap.calls
