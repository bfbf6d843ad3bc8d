import signal
import threading

from django.core.management.base import BaseCommand

from stockkeeper.engine import get_engine


class Command(BaseCommand):
    help = (
        "Run the lifecycle scheduler and the periodic stock check until "
        "interrupted, then shut down gracefully."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single lifecycle tick and exit.",
        )
        parser.add_argument(
            "--shutdown-timeout",
            type=float,
            default=30.0,
            help="Seconds to wait for in-flight work when stopping.",
        )

    def handle(self, *args, **options):
        engine = get_engine()

        if options["once"]:
            report = engine.lifecycle.run_once()
            self.stdout.write(
                f"moved={report.moved} deleted={report.deleted} skipped={report.skipped}"
            )
            engine.activity.shutdown(wait=True)
            return

        done = threading.Event()

        def _request_stop(signum, frame):
            self.stdout.write(f"Received signal {signum}, stopping...")
            done.set()

        previous = {
            sig: signal.signal(sig, _request_stop)
            for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            engine.start()
            self.stdout.write(self.style.SUCCESS("Stock engine running"))
            while not done.wait(1.0):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            drained = engine.shutdown(options["shutdown_timeout"])

        if drained:
            self.stdout.write(self.style.SUCCESS("Stock engine stopped"))
        else:
            self.stdout.write(self.style.WARNING("Stopped with allocations still in flight"))
