from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'stackims.core'

    def ready(self):
        """Import signals when app is ready"""
        import stackims.core.settings_cache  # noqa: F401
