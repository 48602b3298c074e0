"""Per-account orchestration: fetch, evaluate, execute, record."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mailwarden.config import AccountConfig
from mailwarden.logging import get_account_logger
from mailwarden.mail.backup import BackupPolicy
from mailwarden.mail.errors import MailboxError
from mailwarden.mail.gateway import FolderHandle, MailboxGateway
from mailwarden.processing.context import ActionResult, ProcessingContext
from mailwarden.processing.executor import AccountConnector, ActionExecutor
from mailwarden.processing.ratelimit import RateLimiter
from mailwarden.processing.retry import RetryPolicy
from mailwarden.rules.engine import Rule, RuleEngine
from mailwarden.storage.database import IdempotencyStore

# Builds an unconnected gateway for the named account.
GatewayFactory = Callable[[str], MailboxGateway]


class MessageOutcome(BaseModel):
    """Result of running the rule pipeline on one message."""

    identifier: str = Field(description="Message identifier")
    folder: str = Field(description="Folder the message was processed in")
    subject: str | None = Field(default=None, description="Message subject")
    rules_matched: list[str] = Field(default_factory=list, description="Matched rule names")
    results: list[ActionResult] = Field(default_factory=list, description="Per-action results")
    success: bool = Field(default=True, description="False if the pipeline raised")
    error: str | None = Field(default=None, description="Error message if failed")
    recorded: bool = Field(default=False, description="Whether a processed record was written")


class AccountRunResult(BaseModel):
    """Summary of one account run."""

    account: str = Field(description="Account name")
    started_at: datetime = Field(description="When run started")
    completed_at: datetime = Field(description="When run completed")
    dry_run: bool = Field(default=False, description="Was this a dry run")
    messages_found: int = Field(default=0, description="Unprocessed messages found")
    messages_processed: int = Field(default=0, description="Messages through the pipeline")
    messages_failed: int = Field(default=0, description="Messages left unprocessed by errors")
    actions_executed: int = Field(default=0, description="Actions that succeeded")
    actions_failed: int = Field(default=0, description="Actions that returned a failure")
    cancelled: bool = Field(default=False, description="Stopped by a cancellation request")
    error: str | None = Field(default=None, description="Fatal error that aborted the run")
    outcomes: list[MessageOutcome] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def duration_seconds(self) -> float:
        """Get run duration in seconds."""
        return (self.completed_at - self.started_at).total_seconds()


def open_session(account: AccountConfig, gateway_factory: GatewayFactory) -> MailboxGateway:
    """Create, connect and authenticate a gateway for an account (blocking)."""
    gateway = gateway_factory(account.name)
    gateway.connect(account.host, account.port, account.use_tls)
    try:
        gateway.authenticate(account.credentials)
    except Exception:
        gateway.disconnect()
        raise
    return gateway


class AccountProcessor:
    """Processes the configured folders of one account, one message at a time."""

    def __init__(
        self,
        account: AccountConfig,
        rules: list[Rule],
        store: IdempotencyStore,
        gateway_factory: GatewayFactory,
        *,
        connect_account: AccountConnector | None = None,
        backup: BackupPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the processor.

        Args:
            account: Account configuration.
            rules: All configured rules; filtered per account.
            store: Idempotency store (may be shared with other processors).
            gateway_factory: Builds the gateway for this account.
            connect_account: Opens target accounts for cross-account moves.
            backup: Optional backup policy applied before deletes.
            rate_limiter: Override the limiter built from the account config.
            retry_policy: Override the retry policy built from the account config.
            logger: Override the per-account logger.
        """
        self.account = account
        self.engine = RuleEngine(rules)
        self.store = store
        self.gateway_factory = gateway_factory
        self.logger = logger or get_account_logger(account.name)
        self.rate_limiter = rate_limiter or RateLimiter(
            account.max_actions_per_minute,
            account.inter_action_delay_ms / 1000,
        )
        self.retry = retry_policy or RetryPolicy(
            account.max_retry_attempts,
            account.retry_delay_seconds,
        )
        self.executor = ActionExecutor(
            store,
            self.rate_limiter,
            self.retry,
            connect_account=connect_account,
            backup=backup,
            logger=self.logger,
        )

    async def _call(self, description: str, func: Callable[..., Any], *args: Any) -> Any:
        return await self.retry.execute(
            lambda: asyncio.to_thread(func, *args),
            description=description,
        )

    async def run(
        self,
        *,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> AccountRunResult:
        """
        Run the rule pipeline over every configured folder.

        Connection, authentication and folder failures abort this account's
        run and are reported in the result; they never raise.

        Args:
            dry_run: Report intended actions without mutating the mailbox.
            cancel: Checked before each message; set it to stop early.

        Returns:
            AccountRunResult with per-message outcomes.
        """
        name = self.account.name
        started_at = datetime.now()
        result = AccountRunResult(
            account=name,
            started_at=started_at,
            completed_at=started_at,
            dry_run=dry_run,
        )

        if not self.engine.rules_for(name):
            self.logger.info("No rules apply to %s, skipping", name)
            result.completed_at = datetime.now()
            return result

        try:
            gateway = await asyncio.to_thread(open_session, self.account, self.gateway_factory)
        except Exception as e:
            self.logger.error("Could not connect to %s: %s", name, e)
            result.error = f"Connection failed: {e}"
            result.completed_at = datetime.now()
            return result

        try:
            budget = self.account.max_messages_per_session
            for folder_path in self.account.folders:
                if budget <= 0 or result.cancelled:
                    break
                budget -= await self._process_folder(
                    gateway, folder_path, budget, result, dry_run=dry_run, cancel=cancel
                )
        except Exception as e:
            self.logger.error("Run aborted for %s: %s", name, e)
            result.error = str(e)
        finally:
            await asyncio.to_thread(gateway.disconnect)

        result.completed_at = datetime.now()
        self.logger.info(
            "%sRun finished: %d processed, %d failed, %d actions (%d failed) in %.1fs",
            "[dry-run] " if dry_run else "",
            result.messages_processed,
            result.messages_failed,
            result.actions_executed,
            result.actions_failed,
            result.duration_seconds,
        )
        return result

    async def _process_folder(
        self,
        gateway: MailboxGateway,
        folder_path: str,
        budget: int,
        result: AccountRunResult,
        *,
        dry_run: bool,
        cancel: asyncio.Event | None,
    ) -> int:
        """Process up to ``budget`` messages of one folder. Returns how many were attempted."""
        folder = await asyncio.to_thread(gateway.open_folder, folder_path, not dry_run)
        candidates = await self._call("SEARCH", gateway.search_unprocessed, folder)
        unprocessed = await asyncio.to_thread(
            self.store.filter_unprocessed, self.account.name, candidates
        )
        pending = unprocessed[:budget]
        result.messages_found += len(pending)
        self.logger.info("%d unprocessed messages in %s", len(pending), folder_path)

        attempted = 0
        for identifier in pending:
            if cancel is not None and cancel.is_set():
                self.logger.info("Cancellation requested, stopping before %s", identifier)
                result.cancelled = True
                break

            attempted += 1
            await self.rate_limiter.wait_interval()
            try:
                outcome = await self._process_message(gateway, folder, identifier, dry_run)
            except Exception as e:
                self.logger.exception("Failed to process %s in %s: %s", identifier, folder_path, e)
                result.messages_failed += 1
                result.outcomes.append(
                    MessageOutcome(
                        identifier=identifier, folder=folder_path, success=False, error=str(e)
                    )
                )
                continue

            result.messages_processed += 1
            result.actions_executed += sum(1 for r in outcome.results if r.success)
            result.actions_failed += sum(1 for r in outcome.results if not r.success)
            result.outcomes.append(outcome)
        return attempted

    async def _process_message(
        self,
        gateway: MailboxGateway,
        folder: FolderHandle,
        identifier: str,
        dry_run: bool,
    ) -> MessageOutcome:
        account = self.account.name
        message = await self._call(f"FETCH {identifier}", gateway.fetch_message, folder, identifier)

        chain_depth = 0
        message_id = message.message_id_header
        if await asyncio.to_thread(
            self.store.is_from_cross_account_move, account, identifier, message_id
        ):
            chain_depth = await asyncio.to_thread(
                self.store.get_chain_depth, account, identifier, message_id
            )
            self.logger.debug("%s arrived by transfer (chain depth %d)", identifier, chain_depth)

        context = ProcessingContext(
            account=account,
            gateway=gateway,
            folder=folder,
            identifier=identifier,
            chain_depth=chain_depth,
            dry_run=dry_run,
        )
        outcome = MessageOutcome(identifier=identifier, folder=folder.path, subject=message.subject)

        for rule in self.engine.iter_matches(account, message):
            self.logger.info('Rule "%s" matched %s (%s)', rule.name, identifier, message.subject[:60])
            outcome.rules_matched.append(rule.name)
            for action in rule.actions:
                outcome.results.append(await self.executor.execute(action, message, context))

        if not dry_run:
            outcome.recorded = await asyncio.to_thread(
                self.store.mark_processed,
                account,
                identifier,
                outcome.rules_matched,
                message_id_header=message.message_id_header,
                subject=message.subject,
            )
        return outcome


async def process_accounts(
    accounts: list[AccountConfig],
    rules: list[Rule],
    store: IdempotencyStore,
    gateway_factory: GatewayFactory,
    *,
    dry_run: bool = False,
    cancel: asyncio.Event | None = None,
    backup: BackupPolicy | None = None,
) -> list[AccountRunResult]:
    """
    Process several accounts concurrently, each with its own connection.

    A failure in one account never affects the others.
    """
    by_name = {a.name: a for a in accounts}

    def connect_account(name: str) -> MailboxGateway:
        target = by_name.get(name)
        if target is None:
            raise MailboxError(f"Unknown target account: {name}")
        return open_session(target, gateway_factory)

    processors = [
        AccountProcessor(
            account,
            rules,
            store,
            gateway_factory,
            connect_account=connect_account,
            backup=backup,
        )
        for account in accounts
        if account.enabled
    ]
    return list(
        await asyncio.gather(*(p.run(dry_run=dry_run, cancel=cancel) for p in processors))
    )
