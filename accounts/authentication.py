"""
JWT authentication backed by the principal cache.
"""

import logging

from django.apps import apps
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.settings import api_settings

logger = logging.getLogger(__name__)


def principal_key(user_id):
    # Token claims may carry the id as a string.
    return str(user_id)


class CachedJWTAuthentication(JWTAuthentication):
    """
    simplejwt authentication that resolves users through a PrincipalCache.

    The cache is passed in explicitly or taken from the accounts app config,
    so tests can supply their own instance.
    """

    def __init__(self, *args, cache=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._cache = cache

    @property
    def cache(self):
        if self._cache is None:
            self._cache = apps.get_app_config("accounts").principal_cache
        return self._cache

    def get_user(self, validated_token):
        cache = self.cache
        cache.sweep_if_due()
        user_id = validated_token.get(api_settings.USER_ID_CLAIM)
        if user_id is not None:
            user = cache.lookup(principal_key(user_id))
            if user is not None:
                return user
        user = super().get_user(validated_token)
        cache.insert(principal_key(user.pk), user)
        logger.debug("Cached principal %s", user.pk)
        return user
