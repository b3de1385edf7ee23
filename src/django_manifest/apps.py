"""Django app configuration for django-manifest."""

from django.apps import AppConfig


class DjangoManifestConfig(AppConfig):
    """App configuration for django-manifest."""

    name = "django_manifest"
    verbose_name = "Load Manifest"
    default_auto_field = "django.db.models.BigAutoField"
