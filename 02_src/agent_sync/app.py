"""Application bootstrap and lifecycle management."""

from pathlib import Path
from typing import Protocol

from .config import Settings, is_postgres_url, parse_signal, resolve_db_path
from .identity import AgentDirectoryResolver, IIdentityResolver
from .jobs import IJobTracker, JobTracker
from .logging_config import get_logger
from .messaging import (
    DeliveryTracker,
    IDeliveryTracker,
    IMessageLog,
    InboxListener,
    MessageHandler,
    MessageLog,
)
from .models import Channel
from .notify import HubListener, IChangeListener, NotificationHub
from .notify.postgres import PostgresChangeListener
from .spawn import SpawnConfigResolver
from .storage import IStorage, PostgresStorage, Storage
from .sync import (
    BackoffPolicy,
    ConfigSync,
    IReloader,
    NoopReloader,
    ProcessSignalReloader,
    Reconciler,
)

logger = get_logger(__name__)

CONFIG_RECONCILER_NAME = "agent-config"


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self, run_reconcilers: bool = True) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: str | Path | None = None,
    ):
        self._settings = settings or Settings.from_environment()
        if db_path is not None:
            self._settings.database_url = resolve_db_path(db_path)

        # Components (will be initialized in start())
        self._hub: NotificationHub | None = None
        self._storage: IStorage | None = None
        self._messages: MessageLog | None = None
        self._delivery: DeliveryTracker | None = None
        self._jobs: JobTracker | None = None
        self._config_sync: ConfigSync | None = None
        self._config_reconciler: Reconciler | None = None
        self._spawn_resolver: SpawnConfigResolver | None = None
        self._identity: IIdentityResolver | None = None
        self._inboxes: dict[str, tuple[InboxListener, Reconciler]] = {}
        self._running = False

    @property
    def uses_postgres(self) -> bool:
        return is_postgres_url(self._settings.database_url)

    async def start(self, run_reconcilers: bool = True) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Change notifier (SQLite only; PostgreSQL notifies via triggers)
        if not self.uses_postgres:
            self._hub = NotificationHub()

        # 2. Storage
        if self.uses_postgres:
            self._storage = PostgresStorage(str(self._settings.database_url))
        else:
            self._storage = Storage(self._settings.database_url, notifier=self._hub)
        await self._storage.init()
        logger.info("Storage initialized (%s)", "postgres" if self.uses_postgres else "sqlite")

        # 3. Messaging and jobs
        self._messages = MessageLog(self._storage)
        self._delivery = DeliveryTracker(self._storage)
        self._jobs = JobTracker(self._storage)
        self._delivery.attach_jobs(self._jobs)

        # 4. Config sync
        self._config_sync = ConfigSync(
            self._storage,
            self._settings.output_path,
            reloader=self._build_reloader(),
        )
        self._config_reconciler = self._build_reconciler(
            CONFIG_RECONCILER_NAME,
            self._config_sync.run_cycle,
            [Channel.AGENT_CONFIG],
        )

        # 5. Boundary helpers
        self._spawn_resolver = SpawnConfigResolver(self._storage)
        self._identity = AgentDirectoryResolver(self._storage)

        if run_reconcilers:
            await self._config_reconciler.start()
            self._running = True
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for _, reconciler in self._inboxes.values():
            await reconciler.stop()
        if self._config_reconciler:
            await self._config_reconciler.stop()
        if self._hub:
            self._hub.close()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")
        self._running = False

    async def register_inbox(
        self,
        recipient: str,
        handler: MessageHandler,
        create_jobs: bool = False,
        cursor: int = 0,
    ) -> InboxListener:
        """Attach a per-recipient inbox driven by its own reconciler.

        Call after start(); the inbox starts listening immediately when
        reconcilers are running.
        """
        if recipient in self._inboxes:
            raise ValueError(f"Inbox for {recipient!r} already registered")

        inbox = InboxListener(
            recipient=recipient,
            message_log=self.messages,
            delivery=self.delivery,
            handler=handler,
            jobs=self.jobs if create_jobs else None,
            cursor=cursor,
        )
        reconciler = self._build_reconciler(
            f"inbox:{recipient}",
            inbox.drain,
            [Channel.AGENT_CHAT],
            event_filter=inbox.wants,
        )
        self._inboxes[recipient] = (inbox, reconciler)
        if self._running:
            await reconciler.start()
        logger.info("Inbox registered for %s", recipient)
        return inbox

    def _build_reloader(self) -> IReloader:
        if self._settings.reload_pid_file is None:
            return NoopReloader()
        return ProcessSignalReloader(
            self._settings.reload_pid_file,
            parse_signal(self._settings.reload_signal),
        )

    def _listener_factory(self) -> IChangeListener:
        if self.uses_postgres:
            return PostgresChangeListener(str(self._settings.database_url))
        return HubListener(self._hub)

    def _build_reconciler(self, name, cycle, channels, event_filter=None) -> Reconciler:
        return Reconciler(
            name=name,
            cycle=cycle,
            listener_factory=self._listener_factory,
            channels=channels,
            event_filter=event_filter,
            backoff=BackoffPolicy(
                initial=self._settings.backoff_initial,
                maximum=self._settings.backoff_max,
            ),
            keepalive_interval=self._settings.keepalive_interval,
            keepalive_timeout=self._settings.keepalive_timeout,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def messages(self) -> IMessageLog:
        if not self._messages:
            raise RuntimeError("Application not started")
        return self._messages

    @property
    def delivery(self) -> IDeliveryTracker:
        if not self._delivery:
            raise RuntimeError("Application not started")
        return self._delivery

    @property
    def jobs(self) -> IJobTracker:
        if not self._jobs:
            raise RuntimeError("Application not started")
        return self._jobs

    @property
    def config_sync(self) -> ConfigSync:
        if not self._config_sync:
            raise RuntimeError("Application not started")
        return self._config_sync

    @property
    def config_reconciler(self) -> Reconciler:
        if not self._config_reconciler:
            raise RuntimeError("Application not started")
        return self._config_reconciler

    @property
    def spawn_resolver(self) -> SpawnConfigResolver:
        if not self._spawn_resolver:
            raise RuntimeError("Application not started")
        return self._spawn_resolver

    @property
    def identity(self) -> IIdentityResolver:
        if not self._identity:
            raise RuntimeError("Application not started")
        return self._identity

    @property
    def reconcilers(self) -> list[Reconciler]:
        """Config reconciler first, then inboxes in registration order."""
        result = [self._config_reconciler] if self._config_reconciler else []
        result.extend(reconciler for _, reconciler in self._inboxes.values())
        return result
