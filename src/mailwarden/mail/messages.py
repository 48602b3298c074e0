"""Message snapshots and parsing of raw RFC 822 data."""

from dataclasses import dataclass, field
from datetime import datetime
from email import policy
from email.header import decode_header
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from enum import Enum


class MessageFlag(str, Enum):
    """System flags a message can carry."""

    SEEN = "seen"
    FLAGGED = "flagged"
    ANSWERED = "answered"
    DRAFT = "draft"
    DELETED = "deleted"

    @property
    def imap_name(self) -> str:
        """IMAP system flag spelling (e.g. ``\\Seen``)."""
        return "\\" + self.value.capitalize()

    @classmethod
    def from_imap(cls, name: str) -> "MessageFlag | None":
        """Map an IMAP flag atom back to a MessageFlag, ignoring keywords."""
        if not name.startswith("\\"):
            return None
        try:
            return cls(name[1:].lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Message:
    """Immutable snapshot of one message in a mailbox folder."""

    identifier: str
    folder: str
    subject: str = ""
    from_addresses: tuple[str, ...] = ()
    sender_addresses: tuple[str, ...] = ()
    reply_to_addresses: tuple[str, ...] = ()
    to_addresses: tuple[str, ...] = ()
    cc_addresses: tuple[str, ...] = ()
    bcc_addresses: tuple[str, ...] = ()
    body: str = ""
    flags: frozenset[MessageFlag] = frozenset()
    has_attachment: bool = False
    size: int = 0
    received: datetime | None = None
    message_id_header: str | None = None
    raw: bytes = field(default=b"", repr=False)

    @property
    def is_unread(self) -> bool:
        return MessageFlag.SEEN not in self.flags

    @property
    def is_flagged(self) -> bool:
        return MessageFlag.FLAGGED in self.flags

    @property
    def originator_addresses(self) -> tuple[str, ...]:
        """From, Sender and Reply-To addresses combined."""
        return self.from_addresses + self.sender_addresses + self.reply_to_addresses

    @property
    def recipient_addresses(self) -> tuple[str, ...]:
        """To, Cc and Bcc addresses combined."""
        return self.to_addresses + self.cc_addresses + self.bcc_addresses

    @property
    def preview(self) -> str:
        """Get a short preview of the message body."""
        content = self.body[:200].replace("\n", " ").strip()
        return f"{content}..." if len(self.body) > 200 else content


def decode_header_value(value: str | None) -> str:
    """Decode an RFC 2047 encoded header into text."""
    if not value:
        return ""
    fragments = []
    for fragment, encoding in decode_header(str(value)):
        if isinstance(fragment, bytes):
            fragments.append(fragment.decode(encoding or "utf-8", errors="replace"))
        else:
            fragments.append(fragment)
    return "".join(fragments).strip()


def _addresses(values: list[str]) -> tuple[str, ...]:
    return tuple(addr for _name, addr in getaddresses(values) if addr)


def _body_text(parsed) -> str:
    part = parsed.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_message(
    identifier: str,
    folder: str,
    raw: bytes,
    *,
    flags: frozenset[MessageFlag] = frozenset(),
    received: datetime | None = None,
) -> Message:
    """
    Build a Message from raw RFC 822 bytes.

    Args:
        identifier: Mailbox-stable identifier (IMAP UID).
        folder: Folder the message was fetched from.
        raw: Full serialized message.
        flags: Flags reported by the server.
        received: Server arrival time; falls back to the Date header.

    Returns:
        The parsed Message snapshot.
    """
    parsed = BytesParser(policy=policy.default).parsebytes(raw)

    if received is None and parsed.get("Date"):
        try:
            received = parsedate_to_datetime(str(parsed["Date"]))
        except (TypeError, ValueError):
            received = None

    has_attachment = any(True for _ in parsed.iter_attachments()) if parsed.is_multipart() else False

    return Message(
        identifier=identifier,
        folder=folder,
        subject=decode_header_value(parsed.get("Subject")),
        from_addresses=_addresses(parsed.get_all("From", [])),
        sender_addresses=_addresses(parsed.get_all("Sender", [])),
        reply_to_addresses=_addresses(parsed.get_all("Reply-To", [])),
        to_addresses=_addresses(parsed.get_all("To", [])),
        cc_addresses=_addresses(parsed.get_all("Cc", [])),
        bcc_addresses=_addresses(parsed.get_all("Bcc", [])),
        body=_body_text(parsed),
        flags=flags,
        has_attachment=has_attachment,
        size=len(raw),
        received=received,
        message_id_header=decode_header_value(parsed.get("Message-ID")) or None,
        raw=raw,
    )
