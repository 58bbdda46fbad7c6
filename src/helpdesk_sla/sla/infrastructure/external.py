"""
SLA External Service Integrations
==================================

Runtime adapters for the SLA engine:
- System clock
- YAML organisation settings with watchdog hot reload
- Role-based permission checker
- Change-log sink writing structured log records
- APScheduler wrapper for the breach scanner
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_sla.core import ConfigurationException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.services import (
    IChangeLogSink,
    IClock,
    IOrganizationSettingsProvider,
    IPermissionChecker,
)
from helpdesk_sla.sla.domain import Actor, OrganizationSLASettings, SLAChangeLogEntry

logger = get_logger(__name__)


class SystemClock(IClock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def _is_config(self, path: str) -> bool:
        return Path(path).resolve() == self.config_path.resolve()

    def on_modified(self, event):
        if event.is_directory or not self._is_config(event.src_path):
            return
        logger.info("SLA config file changed", extra={"path": event.src_path})
        self.config_manager.reload()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the original
        if not event.is_directory and self._is_config(event.dest_path):
            logger.info("SLA config file replaced", extra={"path": event.dest_path})
            self.config_manager.reload()


class SLAConfigManager(IOrganizationSettingsProvider):
    """
    Thread-safe organisation SLA settings with hot-reload support.

    Uses watchdog to monitor the YAML file and reload settings without
    restarting the service. A reload that fails validation keeps the
    previous settings.
    """

    def __init__(self):
        self._settings: Optional[OrganizationSLASettings] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> OrganizationSLASettings:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            loaded = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA configuration in {self._path}",
                {"error": str(e)}
            ) from e

        with self._lock:
            self._settings = loaded
        return loaded

    @staticmethod
    def _load_from_file(path: Path) -> OrganizationSLASettings:
        """Load and parse the YAML settings file."""
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return OrganizationSLASettings()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        # Settings may sit at the top level or under an "sla" key
        if isinstance(data, dict) and isinstance(data.get("sla"), dict):
            data = data["sla"]
        return OrganizationSLASettings.model_validate(data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_settings = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload SLA config, keeping previous settings",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._settings = new_settings
        logger.info("SLA configuration reloaded", extra=new_settings.model_dump(mode="json"))
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skips watching if the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the configuration file (safe to call when not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_settings(self) -> OrganizationSLASettings:
        with self._lock:
            if self._settings is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._settings


class RoleBasedPermissionChecker(IPermissionChecker):
    """Grants the manage-tickets capability to actors holding any manager role."""

    def __init__(self, manager_roles: Iterable[str]):
        self._manager_roles = frozenset(role.strip().lower() for role in manager_roles if role.strip())

    def has_manage_tickets_capability(self, actor: Actor) -> bool:
        return any(role.lower() in self._manager_roles for role in actor.roles)


class LoggingChangeLogSink(IChangeLogSink):
    """
    Change-log sink that emits one structured log record per entry.

    Persisting the audit trail belongs to the ticket history subsystem,
    which consumes these records.
    """

    def __init__(self, logger_name: str = "helpdesk_sla.sla.changelog"):
        self._logger = get_logger(logger_name)

    async def record(self, entry: SLAChangeLogEntry) -> None:
        self._logger.info(
            entry.message,
            extra={
                "ticket_id": str(entry.ticket_id),
                "actor_id": entry.actor_id,
                "field_changes": entry.field_changes,
                "recorded_at": entry.recorded_at.isoformat() if entry.recorded_at else None,
            }
        )


class SLAScheduler:
    """
    Wrapper for APScheduler for the background sweeps.

    The breach sweep and, when given, the snooze expiry sweep run as
    separate interval jobs; an interval of 0 leaves that job out. Missed
    runs are coalesced and at most one instance of each job runs at a time.
    """

    JOB_ID = "sla_breach_sweep"
    UNSNOOZE_JOB_ID = "sla_unsnooze_sweep"

    def __init__(self, interval_seconds: int = 300, unsnooze_interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self.unsnooze_interval_seconds = unsnooze_interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        job_func: Callable[[], Awaitable[object]],
        unsnooze_func: Optional[Callable[[], Awaitable[object]]] = None
    ) -> None:
        """Start the scheduler with the breach sweep and optional unsnooze sweep."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        if self.interval_seconds > 0:
            self._add_job(job_func, self.JOB_ID, "SLA Breach Sweep", self.interval_seconds)
        if unsnooze_func is not None and self.unsnooze_interval_seconds > 0:
            self._add_job(
                unsnooze_func, self.UNSNOOZE_JOB_ID, "Snooze Expiry Sweep",
                self.unsnooze_interval_seconds
            )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={
            "interval_seconds": self.interval_seconds,
            "unsnooze_interval_seconds": self.unsnooze_interval_seconds,
            "jobs": [job.id for job in self._scheduler.get_jobs()],
        })

    def _add_job(self, func, job_id: str, name: str, seconds: int) -> None:
        self._scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=name,
            misfire_grace_time=seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

    async def stop(self) -> None:
        """Stop the scheduler; sweeps already in progress are awaited by the caller."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
