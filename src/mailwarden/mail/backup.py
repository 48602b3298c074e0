"""Backup snapshots taken before destructive actions."""

import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from mailwarden.mail.messages import Message


class BackupPolicy(ABC):
    """Stores a copy of a message before it is deleted."""

    @abstractmethod
    def snapshot(self, account: str, message: Message) -> Path | None:
        """Save the message. Returns where it was stored, if on disk."""
        ...


class DirectoryBackupPolicy(BackupPolicy):
    """Writes raw messages as .eml files under ``<root>/<account>/<folder>/``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @staticmethod
    def _safe(name: str) -> str:
        return re.sub(r"[^\w.-]+", "-", name).strip("-") or "_"

    def snapshot(self, account: str, message: Message) -> Path:
        if not message.raw:
            raise ValueError(f"Message {message.identifier} has no raw content to back up")
        directory = self.root / self._safe(account) / self._safe(message.folder)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        path = directory / f"{stamp}-{self._safe(message.identifier)}.eml"
        path.write_bytes(message.raw)
        return path
