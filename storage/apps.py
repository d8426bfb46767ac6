from django.apps import AppConfig


class StorageConfig(AppConfig):
    name = "storage"
    verbose_name = "Key-value storage"

    def ready(self):
        from storage import signals  # noqa: F401
