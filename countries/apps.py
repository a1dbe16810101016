from django.apps import AppConfig


class CountriesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "countries"

    def ready(self):
        # One orchestrator (and the store it owns) per process.
        from .refresh import build_orchestrator

        self.orchestrator = build_orchestrator()
