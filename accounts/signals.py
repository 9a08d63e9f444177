from django.apps import apps
from django.conf import settings
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .authentication import principal_key


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
@receiver(post_delete, sender=settings.AUTH_USER_MODEL)
def drop_cached_principal(sender, instance, **kwargs):
    """A changed role or active flag must not be served from the cache."""
    apps.get_app_config("accounts").principal_cache.evict(principal_key(instance.pk))
