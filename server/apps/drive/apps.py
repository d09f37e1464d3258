"""Django app configuration for drive app."""

from django.apps import AppConfig


class DriveConfig(AppConfig):
    """Configuration for drive app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.drive'
    label = 'drive'
    verbose_name = 'Image Drive'
