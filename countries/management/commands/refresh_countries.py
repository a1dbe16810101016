import logging
import time

from asgiref.sync import async_to_sync
from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from countries.exceptions import CountryCacheError


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Fetch countries and exchange rates, refresh the cache and the summary image."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval", type=float, default=None,
            help="Repeat every INTERVAL seconds until interrupted.",
        )

    def handle(self, *args, **options):
        orchestrator = apps.get_app_config("countries").orchestrator
        interval = options["interval"]
        try:
            if interval is None:
                self._run_once(orchestrator)
                return
            while True:
                try:
                    self._run_once(orchestrator)
                except CommandError as exc:
                    logger.error("Scheduled refresh failed: %s", exc)
                time.sleep(interval)
        except KeyboardInterrupt:
            self.stdout.write("Stopped.")
        finally:
            orchestrator.store.close()

    def _run_once(self, orchestrator):
        try:
            report = async_to_sync(orchestrator.run_cycle)()
        except CountryCacheError as exc:
            raise CommandError(f"{exc.error}: {exc.details}") from exc
        self.stdout.write(self.style.SUCCESS(
            f"Refreshed at {report.generated_at.isoformat()}: "
            f"{report.total_fetched} fetched, {report.upserted} upserted, {report.skipped} skipped"
        ))
        for error in report.errors:
            self.stdout.write(f"  skipped {error['name']}: {error['details']}")
