import threading

from django.apps import AppConfig


class StockkeeperConfig(AppConfig):
    name = "stockkeeper"
    verbose_name = "Stock keeper"
    default_auto_field = "django.db.models.BigAutoField"

    def __init__(self, app_name, app_module):
        super().__init__(app_name, app_module)
        self._engine = None
        self._engine_lock = threading.Lock()

    @property
    def engine(self):
        """
        The process-wide engine, built from settings on first use.

        Background jobs are not started here; ``runstockkeeper`` or the host
        application calls ``engine.start()``.
        """
        with self._engine_lock:
            if self._engine is None:
                from .engine import Engine

                self._engine = Engine()
            return self._engine

    @engine.setter
    def engine(self, value):
        with self._engine_lock:
            self._engine = value
