from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'
    verbose_name = 'Gebeta core'

    def ready(self):
        from core.delivery.presence import PresenceRegistry

        # One registry per process; the websocket consumer and the services share it.
        self.presence = PresenceRegistry()


def get_presence_registry():
    from django.apps import apps

    return apps.get_app_config('core').presence
