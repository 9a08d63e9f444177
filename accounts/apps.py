import atexit

from django.apps import AppConfig


class AccountsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "accounts"

    def ready(self):
        from .cache import PrincipalCache, clear_on_signals

        self.principal_cache = PrincipalCache()
        atexit.register(self.principal_cache.clear)
        clear_on_signals(self.principal_cache)

        from . import signals  # noqa: F401
