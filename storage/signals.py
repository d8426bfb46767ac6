from django.core.signals import setting_changed
from django.dispatch import receiver

from storage.store import reset_store

STORE_SETTINGS = {"KVSTORE", "KVSTORE_CONFIG_FILE"}


@receiver(setting_changed)
def reset_store_on_setting_change(*, setting, **kwargs):
    if setting in STORE_SETTINGS:
        reset_store()
