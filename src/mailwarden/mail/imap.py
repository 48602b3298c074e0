"""IMAP implementation of the mailbox gateway using imaplib."""

from __future__ import annotations

import imaplib
import logging
import re
import ssl
import time
from collections.abc import Callable, Iterable
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any

from mailwarden.mail.errors import (
    AuthenticationError,
    ConnectionFailedError,
    FolderNotFoundError,
    MailboxError,
    TransientMailboxError,
)
from mailwarden.mail.gateway import Credentials, FolderHandle, MailboxGateway
from mailwarden.mail.messages import Message, MessageFlag, parse_message

logger = logging.getLogger(__name__)

DEFAULT_IMAP_PORT = 993
DEFAULT_TIMEOUT_SECONDS = 30.0

_COPYUID_RE = re.compile(r"\[COPYUID \d+ \S+ (\S+)\]", re.IGNORECASE)
_APPENDUID_RE = re.compile(r"\[APPENDUID \d+ (\S+)\]", re.IGNORECASE)


def quote_mailbox_name(folder_name: str) -> str:
    escaped = folder_name.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{escaped}"'


def decode_imap_response(data: object) -> str:
    if not isinstance(data, list):
        return ""
    parts: list[str] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="replace"))
        elif isinstance(item, tuple):
            parts.extend(
                p.decode("utf-8", errors="replace") if isinstance(p, bytes) else str(p)
                for p in item
            )
        else:
            parts.append(str(item))
    return " | ".join(parts).strip()


def parse_uid_search_data(data: object) -> list[str]:
    if not isinstance(data, list) or not data or not data[0]:
        return []
    raw = data[0]
    if isinstance(raw, bytes):
        return [uid.decode("ascii", errors="ignore") for uid in raw.split()]
    if isinstance(raw, str):
        return [uid for uid in raw.split() if uid]
    return []


def format_flags(flags: Iterable[MessageFlag]) -> str:
    return "(" + " ".join(flag.imap_name for flag in flags) + ")"


class ImapGateway(MailboxGateway):
    """Mailbox gateway speaking IMAP4rev1 with UID commands."""

    def __init__(
        self,
        account: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        imap_factory: Callable[..., imaplib.IMAP4] | None = None,
    ) -> None:
        """
        Args:
            account: Account name, used for error context and logging.
            timeout: Socket timeout in seconds.
            imap_factory: Override for constructing the imaplib client.
        """
        self.account = account
        self.timeout = timeout
        self._imap_factory = imap_factory
        self._imap: imaplib.IMAP4 | None = None
        self._selected: str | None = None

    # ─── Connection ───────────────────────────────────────────────────────

    @property
    def imap(self) -> imaplib.IMAP4:
        if self._imap is None:
            raise MailboxError("Not connected", account=self.account)
        return self._imap

    def connect(self, host: str, port: int = DEFAULT_IMAP_PORT, use_tls: bool = True) -> None:
        try:
            if self._imap_factory is not None:
                self._imap = self._imap_factory(host, port)
            elif use_tls:
                self._imap = imaplib.IMAP4_SSL(
                    host,
                    port,
                    ssl_context=ssl.create_default_context(),
                    timeout=self.timeout,
                )
            else:
                self._imap = imaplib.IMAP4(host, port, timeout=self.timeout)
        except (OSError, imaplib.IMAP4.error) as e:
            raise ConnectionFailedError(
                f"Could not connect to {host}:{port}: {e}", account=self.account
            ) from e
        logger.debug("Connected to %s:%s for %s", host, port, self.account)

    def authenticate(self, credentials: Credentials) -> None:
        try:
            self.imap.login(credentials.username, credentials.password)
        except imaplib.IMAP4.abort as e:
            raise TransientMailboxError(str(e), account=self.account) from e
        except imaplib.IMAP4.error as e:
            raise AuthenticationError(
                f"Login failed for {credentials.username}: {e}", account=self.account
            ) from e

    def disconnect(self) -> None:
        if self._imap is None:
            return
        with suppress(imaplib.IMAP4.error, OSError):
            self._imap.logout()
        self._imap = None
        self._selected = None

    # ─── Command plumbing ─────────────────────────────────────────────────

    def _run(self, what: str, command: Callable[..., tuple[str, Any]], *args: Any) -> Any:
        """Run an imaplib command and translate failures into mailbox errors."""
        try:
            status, data = command(*args)
        except (imaplib.IMAP4.abort, TimeoutError, ConnectionError) as e:
            self._selected = None
            raise TransientMailboxError(f"{what} failed: {e}", account=self.account) from e
        except imaplib.IMAP4.error as e:
            raise MailboxError(f"{what} failed: {e}", account=self.account) from e
        if status != "OK":
            detail = decode_imap_response(data) or "no detail"
            raise MailboxError(f"{what} failed: {detail}", account=self.account)
        return data

    def _ensure_selected(self, folder: FolderHandle) -> None:
        if self._selected != folder.path:
            self.open_folder(folder.path, folder.read_write)

    def _response_uid(self, pattern: re.Pattern[str], code: str, data: object) -> str | None:
        match = pattern.search(decode_imap_response(data))
        if match:
            return match.group(1)
        _typ, untagged = self.imap.response(code)
        match = pattern.search(f"[{code} " + decode_imap_response(untagged) + "]")
        return match.group(1) if match else None

    # ─── Folders ──────────────────────────────────────────────────────────

    def open_folder(self, path: str, read_write: bool = True) -> FolderHandle:
        try:
            status, data = self.imap.select(quote_mailbox_name(path), readonly=not read_write)
        except (imaplib.IMAP4.abort, TimeoutError, ConnectionError) as e:
            raise TransientMailboxError(f"SELECT {path} failed: {e}", account=self.account) from e
        except imaplib.IMAP4.error as e:
            raise FolderNotFoundError(path, account=self.account) from e
        if status != "OK":
            raise FolderNotFoundError(path, account=self.account)

        self._selected = path
        uid_validity = None
        _code, validity = self.imap.response("UIDVALIDITY")
        if validity and validity[0]:
            raw = validity[0]
            uid_validity = raw.decode("ascii", errors="replace") if isinstance(raw, bytes) else str(raw)
        return FolderHandle(path=path, read_write=read_write, uid_validity=uid_validity)

    def folder_exists(self, path: str) -> bool:
        data = self._run("LIST", self.imap.list, '""', quote_mailbox_name(path))
        return bool(data) and data[0] is not None

    def create_folder(self, path: str) -> None:
        try:
            self._run("CREATE", self.imap.create, quote_mailbox_name(path))
        except TransientMailboxError:
            raise
        except MailboxError as e:
            raise FolderNotFoundError(path, account=self.account) from e

    # ─── Messages ─────────────────────────────────────────────────────────
    #
    # UIDs are only unique within one folder, so identifiers handed to the
    # core are qualified as "<folder>/<uid>".

    @staticmethod
    def qualify(folder_path: str, uid: str | None) -> str | None:
        return f"{folder_path}/{uid}" if uid else None

    @staticmethod
    def _uid(identifier: str) -> str:
        return identifier.rsplit("/", 1)[-1]

    def search_unprocessed(self, folder: FolderHandle) -> list[str]:
        self._ensure_selected(folder)
        data = self._run("SEARCH", self.imap.uid, "SEARCH", None, "UNDELETED")
        return [f"{folder.path}/{uid}" for uid in sorted(parse_uid_search_data(data), key=int)]

    def fetch_message(self, folder: FolderHandle, identifier: str) -> Message:
        self._ensure_selected(folder)
        data = self._run(
            f"FETCH {identifier}",
            self.imap.uid,
            "FETCH",
            self._uid(identifier),
            "(FLAGS INTERNALDATE BODY.PEEK[])",
        )

        raw: bytes | None = None
        meta = b""
        for part in data or []:
            if isinstance(part, tuple) and len(part) >= 2:
                meta, raw = part[0], part[1]
                break
        if raw is None:
            raise MailboxError(
                f"Message {identifier} not found in {folder.path}", account=self.account
            )

        flags = frozenset(
            flag
            for name in imaplib.ParseFlags(meta)
            if (flag := MessageFlag.from_imap(name.decode("ascii", errors="ignore")))
        )
        received = None
        internal = imaplib.Internaldate2tuple(meta)
        if internal is not None:
            received = datetime.fromtimestamp(time.mktime(internal), tz=timezone.utc)

        return parse_message(identifier, folder.path, raw, flags=flags, received=received)

    def move(self, folder: FolderHandle, identifier: str, destination: str) -> str | None:
        self._ensure_selected(folder)
        uid = self._uid(identifier)
        target = quote_mailbox_name(destination)
        try:
            data = self._run("MOVE", self.imap.uid, "MOVE", uid, target)
            return self.qualify(destination, self._response_uid(_COPYUID_RE, "COPYUID", data))
        except TransientMailboxError:
            raise
        except MailboxError:
            logger.debug("MOVE unsupported for %s, falling back to COPY", self.account)

        data = self._run("COPY", self.imap.uid, "COPY", uid, target)
        new_uid = self._response_uid(_COPYUID_RE, "COPYUID", data)
        self._run("STORE", self.imap.uid, "STORE", uid, "+FLAGS.SILENT", r"(\Deleted)")
        self._run("EXPUNGE", self.imap.expunge)
        return self.qualify(destination, new_uid)

    def append(self, folder_path: str, message: Message) -> str | None:
        if not message.raw:
            raise MailboxError(
                f"Message {message.identifier} has no raw content to append",
                account=self.account,
            )
        date_time = imaplib.Time2Internaldate(message.received) if message.received else None
        flags = format_flags(f for f in message.flags if f is not MessageFlag.DELETED)
        data = self._run(
            "APPEND",
            self.imap.append,
            quote_mailbox_name(folder_path),
            flags if flags != "()" else None,
            date_time,
            message.raw,
        )
        return self.qualify(folder_path, self._response_uid(_APPENDUID_RE, "APPENDUID", data))

    def set_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        self._ensure_selected(folder)
        self._run(
            "STORE", self.imap.uid, "STORE", self._uid(identifier), "+FLAGS.SILENT", format_flags(flags)
        )

    def clear_flags(
        self, folder: FolderHandle, identifier: str, flags: Iterable[MessageFlag]
    ) -> None:
        self._ensure_selected(folder)
        self._run(
            "STORE", self.imap.uid, "STORE", self._uid(identifier), "-FLAGS.SILENT", format_flags(flags)
        )

    def expunge(self, folder: FolderHandle) -> None:
        self._ensure_selected(folder)
        self._run("EXPUNGE", self.imap.expunge)
