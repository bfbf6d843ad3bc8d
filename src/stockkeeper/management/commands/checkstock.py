import json

from django.core.management.base import BaseCommand, CommandError

from stockkeeper.engine import get_engine
from stockkeeper.exceptions import StorageError


class Command(BaseCommand):
    help = "Run a stock alert evaluation now and print the result."

    def handle(self, *args, **options):
        try:
            result = get_engine().check_stock()
        except StorageError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(json.dumps(result))
        if result["alert_fired"]:
            self.stdout.write(self.style.WARNING(f"Alert sent: {result['kind']}"))
