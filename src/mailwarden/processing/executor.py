"""Executes rule actions against a mailbox."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, assert_never

from mailwarden.mail.backup import BackupPolicy
from mailwarden.mail.errors import FolderNotFoundError, MailboxError, TransientMailboxError
from mailwarden.mail.gateway import MailboxGateway
from mailwarden.mail.messages import Message, MessageFlag
from mailwarden.processing.context import MAX_CHAIN_DEPTH, ActionResult, ProcessingContext
from mailwarden.processing.ratelimit import RateLimiter
from mailwarden.processing.retry import RetryPolicy
from mailwarden.rules.actions import (
    Action,
    AddFlag,
    Delete,
    MarkRead,
    MarkUnread,
    MoveToAccount,
    MoveToFolder,
    RemoveFlag,
)
from mailwarden.storage.database import IdempotencyStore

# Opens an authenticated gateway for another configured account.
AccountConnector = Callable[[str], MailboxGateway]


def parse_flag(name: str) -> MessageFlag | None:
    """Resolve a configured flag name (``seen``, ``\\Seen`` …) to a MessageFlag."""
    try:
        return MessageFlag(name.strip().lstrip("\\").lower())
    except ValueError:
        return None


class ActionExecutor:
    """Runs actions for one account, rate-limited and with transport retries."""

    def __init__(
        self,
        store: IdempotencyStore,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        *,
        connect_account: AccountConnector | None = None,
        backup: BackupPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Args:
            store: Idempotency store, used to record cross-account moves.
            rate_limiter: Limiter consulted before every live action.
            retry_policy: Policy wrapping transport sub-operations.
            connect_account: Opens a connection to a transfer target account.
            backup: Optional snapshot policy applied before deletes.
            logger: Logger for action outcomes (default: module logger).
        """
        self.store = store
        self.rate_limiter = rate_limiter
        self.retry = retry_policy
        self.connect_account = connect_account
        self.backup = backup
        self.logger = logger or logging.getLogger(__name__)

    async def execute(
        self,
        action: Action,
        message: Message,
        context: ProcessingContext,
    ) -> ActionResult:
        """
        Execute one action.

        Permanent mailbox errors and configuration problems are returned as a
        failed result. Transient errors that survive the retry policy
        propagate to the caller.
        """
        name = action.describe()
        if context.removed:
            return self._failed(
                name, "", "Message is no longer in the source folder", context.dry_run
            )

        try:
            match action:
                case MoveToFolder():
                    result = await self._move_to_folder(action, message, context)
                case MoveToAccount():
                    result = await self._move_to_account(action, message, context)
                case Delete():
                    result = await self._delete(message, context)
                case MarkRead():
                    result = await self._change_flag(name, "seen", True, context)
                case MarkUnread():
                    result = await self._change_flag(name, "seen", False, context)
                case AddFlag():
                    result = await self._change_flag(name, action.flag, True, context)
                case RemoveFlag():
                    result = await self._change_flag(name, action.flag, False, context)
                case _:
                    assert_never(action)
        except TransientMailboxError:
            raise
        except MailboxError as e:
            result = self._failed(name, "", str(e), context.dry_run)

        if result.success:
            prefix = "[dry-run] " if result.dry_run else ""
            self.logger.info("%s%s: %s", prefix, context.identifier, result.detail)
        else:
            self.logger.warning(
                "%s failed for %s: %s", name, context.identifier, result.error
            )
        return result

    # ─── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _failed(name: str, detail: str, error: str, dry_run: bool) -> ActionResult:
        return ActionResult(action=name, success=False, detail=detail, error=error, dry_run=dry_run)

    async def _call(self, description: str, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking gateway call in a worker thread under the retry policy."""
        return await self.retry.execute(
            lambda: asyncio.to_thread(func, *args),
            description=description,
        )

    # ─── Actions ──────────────────────────────────────────────────────────

    async def _move_to_folder(
        self,
        action: MoveToFolder,
        message: Message,
        ctx: ProcessingContext,
    ) -> ActionResult:
        name = action.describe()
        detail = f'Move {ctx.identifier} from "{ctx.folder.path}" to "{action.folder}"'
        if ctx.dry_run:
            return ActionResult(action=name, detail=detail, dry_run=True)

        await self.rate_limiter.acquire()
        gateway = ctx.gateway
        try:
            if not await self._call("LIST", gateway.folder_exists, action.folder):
                await self._call("CREATE", gateway.create_folder, action.folder)
                self.logger.info('Created folder "%s"', action.folder)
        except FolderNotFoundError as e:
            return self._failed(name, detail, str(e), False)

        new_identifier = await self._call(
            "MOVE", gateway.move, ctx.folder, ctx.identifier, action.folder
        )
        ctx.relocate(action.folder, new_identifier)
        return ActionResult(action=name, detail=detail)

    async def _move_to_account(
        self,
        action: MoveToAccount,
        message: Message,
        ctx: ProcessingContext,
    ) -> ActionResult:
        name = action.describe()
        detail = (
            f'Transfer {ctx.identifier} from {ctx.account} to '
            f'{action.target_account}/"{action.target_folder}"'
        )
        if action.mark_processed:
            detail += " and delete the source"

        if ctx.chain_depth >= MAX_CHAIN_DEPTH:
            return self._failed(
                name,
                detail,
                f"Max chain depth ({MAX_CHAIN_DEPTH}) reached; transfer rejected",
                ctx.dry_run,
            )
        if action.target_account == ctx.account:
            return self._failed(
                name, detail, "Target account is the source account", ctx.dry_run
            )
        if self.connect_account is None:
            return self._failed(
                name, detail, "No connector configured for cross-account moves", ctx.dry_run
            )
        if ctx.dry_run:
            ctx.chain_depth += 1
            return ActionResult(action=name, detail=detail, dry_run=True)

        await self.rate_limiter.acquire()
        target = await self._call(
            f"CONNECT {action.target_account}", self.connect_account, action.target_account
        )
        try:
            if not await self._call("LIST", target.folder_exists, action.target_folder):
                await self._call("CREATE", target.create_folder, action.target_folder)
            target_identifier = await self._call(
                "APPEND", target.append, action.target_folder, message
            )
        finally:
            await asyncio.to_thread(target.disconnect)

        await asyncio.to_thread(
            self.store.mark_cross_account_move,
            ctx.account,
            message.identifier,
            action.target_account,
            target_identifier,
            message.message_id_header,
        )
        ctx.chain_depth += 1

        if action.mark_processed:
            await self._call(
                "STORE", ctx.gateway.set_flags, ctx.folder, ctx.identifier, [MessageFlag.DELETED]
            )
            await self._call("EXPUNGE", ctx.gateway.expunge, ctx.folder)
            ctx.removed = True

        return ActionResult(action=name, detail=detail)

    async def _delete(self, message: Message, ctx: ProcessingContext) -> ActionResult:
        name = "delete"
        detail = f'Delete {ctx.identifier} from "{ctx.folder.path}"'
        if ctx.dry_run:
            return ActionResult(action=name, detail=detail, dry_run=True)

        await self.rate_limiter.acquire()
        if self.backup is not None:
            try:
                location = await asyncio.to_thread(self.backup.snapshot, ctx.account, message)
                self.logger.debug("Backed up %s to %s", ctx.identifier, location)
            except Exception as e:
                self.logger.warning(
                    "Backup of %s failed, deleting anyway: %s", ctx.identifier, e
                )

        await self._call(
            "STORE", ctx.gateway.set_flags, ctx.folder, ctx.identifier, [MessageFlag.DELETED]
        )
        await self._call("EXPUNGE", ctx.gateway.expunge, ctx.folder)
        ctx.removed = True
        return ActionResult(action=name, detail=detail)

    async def _change_flag(
        self,
        name: str,
        flag_name: str,
        add: bool,
        ctx: ProcessingContext,
    ) -> ActionResult:
        flag = parse_flag(flag_name)
        if flag is None:
            valid = ", ".join(f.value for f in MessageFlag)
            return self._failed(
                name,
                "",
                f'Unrecognized flag "{flag_name}" (expected one of: {valid})',
                ctx.dry_run,
            )

        verb = "Set" if add else "Clear"
        detail = f"{verb} {flag.imap_name} on {ctx.identifier}"
        if ctx.dry_run:
            return ActionResult(action=name, detail=detail, dry_run=True)

        await self.rate_limiter.acquire()
        operation = ctx.gateway.set_flags if add else ctx.gateway.clear_flags
        await self._call("STORE", operation, ctx.folder, ctx.identifier, [flag])
        return ActionResult(action=name, detail=detail)
