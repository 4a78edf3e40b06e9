"""Command-line interface for cronlog."""

import logging
import signal
import sys
import time

import fire

from cronlog.core.config import Settings, load_settings
from cronlog.core.errors import ConfigurationError, PermanentFailure
from cronlog.core.hours import parse_date, previous_hour_slot, today
from cronlog.core.logging import setup_logging
from cronlog.core.paths import ensure_data_directories
from cronlog.core.services import ArchiveService
from cronlog.db.migrations import MigrationRunner, get_connection, verify_schema

logger = logging.getLogger(__name__)


class CronlogCLI:
    """cronlog CLI commands."""

    def __init__(self, env_file: str | None = None, log_level: str | None = None):
        """
        Args:
            env_file: .env file to load (defaults to ./.env when present)
            log_level: Console log level, overrides CRONLOG_LOG_LEVEL
        """
        self._env_file = env_file
        self._log_level = log_level
        self._settings: Settings | None = None
        self._service: ArchiveService | None = None

    def _get_settings(self) -> Settings:
        if self._settings is None:
            try:
                self._settings = load_settings(env_file=self._env_file)
            except ConfigurationError as e:
                print(f"Configuration error: {e}", file=sys.stderr)
                sys.exit(2)
            setup_logging(
                console_level=self._log_level or self._settings.log_level,
                log_dir=self._settings.log_dir,
            )
        return self._settings

    def _get_service(self) -> ArchiveService:
        if self._service is None:
            settings = self._get_settings()
            ensure_data_directories()
            self._service = ArchiveService(settings)
        return self._service

    def serve(self) -> None:
        """Run the scheduler in the foreground until interrupted.

        Registers the daily, hourly, retry and retention triggers and, when
        backfill_on_start is set, processes slots missed while stopped.
        """
        service = self._get_service()

        def signal_handler(sig, frame):
            logger.info("Shutting down archive service...")
            service.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            status = service.start()
        except ConfigurationError as e:
            logger.error(f"Cannot start: {e}")
            sys.exit(2)

        for job_id, next_run in status.next_runs.items():
            logger.info(f"{job_id}: next run {next_run}")
        logger.info("Archive service running. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while service.is_running():
                time.sleep(1)
        except KeyboardInterrupt:
            signal_handler(None, None)

    def migrate(self) -> dict:
        """Create or upgrade the slot store schema."""
        settings = self._get_settings()
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        runner = MigrationRunner(settings.db_path)
        applied = runner.run_migrations()

        conn = get_connection(settings.db_path)
        try:
            schema = verify_schema(conn)
        finally:
            conn.close()

        return {"applied": applied, **runner.get_status(), "valid": schema["valid"], "missing_tables": schema["missing"]}

    def create_daily(self, date: str | None = None) -> dict:
        """Create the Job and its 24 slots for a date (default: today).

        Args:
            date: Date as YYYY-MM-DD
        """
        service = self._get_service()
        job_date = parse_date(date) if date else today(service.tz)
        return service.creator.create_daily_job(job_date).to_dict()

    def process(self, date: str | None = None, hour: str | None = None) -> dict:
        """Process one hour slot now (default: the previous hour).

        Exits with status 3 if the slot ends up permanently failed.

        Args:
            date: Date as YYYY-MM-DD
            hour: Hour range such as 14-15, or the starting hour
        """
        service = self._get_service()
        if date is None or hour is None:
            default_date, default_hour = previous_hour_slot(service.tz)
            date = date or default_date.isoformat()
            hour = hour if hour is not None else default_hour

        try:
            slot = service.trigger(str(date), hour, raise_on_permanent=True)
        except PermanentFailure as e:
            logger.error(str(e))
            sys.exit(3)
        return slot.to_dict() if slot else {}

    def status(self, date: str | None = None, hour: str | None = None) -> dict | list:
        """Show slot status for a Job, or overall counts and failures.

        Args:
            date: Date as YYYY-MM-DD (omit for the overview)
            hour: Restrict to one hour range
        """
        service = self._get_service()
        if date is None:
            return {
                "slots": service.store.status_counts(),
                "failed": [
                    {k: v for k, v in slot.to_dict().items() if k in ("date", "hour_range", "status", "attempts", "last_error")}
                    for slot in service.list_failed()
                ],
                "scheduler": service.get_status().state.value,
            }

        rows = service.get_job_status(str(date), hour)
        if not rows:
            return {"error": f"No job for {date}"}
        return rows

    def logs(self, date: str, hour: str | None = None, limit: int = 50) -> list[dict]:
        """Show slot history, newest first.

        Args:
            date: Date as YYYY-MM-DD
            hour: Restrict to one hour range
            limit: Maximum number of events
        """
        service = self._get_service()
        return [event.to_dict() for event in service.get_logs(str(date), hour, limit=limit)]

    def retry(self) -> dict:
        """Reclaim stale slots and retry every failed slot with attempts left."""
        return self._get_service().run_retry().to_dict()

    def backfill(self, start: str | None = None, end: str | None = None, max_slots: int | None = None) -> dict:
        """Process slots whose hour has passed but were never processed.

        Args:
            start: First date to scan (default: yesterday)
            end: Last date to scan (default: today)
            max_slots: Maximum slots to process in this run
        """
        service = self._get_service()
        return service.run_backfill(
            str(start) if start else None,
            str(end) if end else None,
            max_slots=max_slots,
        ).to_dict()

    def sweep(self, target: str = "all", dry_run: bool = False, lifecycle: bool = False) -> dict:
        """Run retention sweeps.

        Args:
            target: database, storage or all
            dry_run: Report what would be deleted without deleting
            lifecycle: Also install the S3 bucket lifecycle rule
        """
        service = self._get_service()
        result: dict = {"reports": [report.to_dict() for report in service.run_sweep(target, dry_run=dry_run)]}
        if lifecycle:
            result["lifecycle_rule"] = service.apply_storage_lifecycle()
        return result

    def stats(self) -> dict:
        """Show retention statistics for jobs and stored objects."""
        return self._get_service().get_stats()

    def requeue(self, date: str, hour: str | None = None) -> list[dict]:
        """Reset failed or permanently failed slots to pending.

        Args:
            date: Date as YYYY-MM-DD
            hour: One hour range (default: every failed slot of the Job)
        """
        return [slot.to_dict() for slot in self._get_service().requeue(str(date), hour)]

    def config(self) -> dict:
        """Show the effective settings with secrets masked."""
        return self._get_settings().describe()


def main() -> None:
    """Main entry point for the cronlog CLI."""
    fire.Fire(CronlogCLI)


if __name__ == "__main__":
    main()
