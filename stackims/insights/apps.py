from django.apps import AppConfig


class InsightsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'stackims.insights'

    def ready(self):
        """Create the process-wide context cache and connect invalidation signals"""
        from .context_cache import ContextCache
        from .signals import connect_signals

        self.context_cache = ContextCache()
        connect_signals()
