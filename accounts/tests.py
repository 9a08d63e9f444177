import signal

from django.apps import apps
from django.contrib.auth import get_user_model
from django.core.cache import caches
from django.core.cache.backends.locmem import LocMemCache
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from core.exceptions import AuthorizationError

from . import policy
from .authentication import CachedJWTAuthentication, principal_key
from .cache import PrincipalCache, clear_on_signals


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def local_backend(name, timeout, max_entries=100):
    return LocMemCache(
        name,
        {
            "TIMEOUT": timeout,
            "OPTIONS": {"MAX_ENTRIES": max_entries, "CULL_FREQUENCY": max_entries},
        },
    )


class Actor:
    def __init__(self, role, username="someone"):
        self.role = role
        self.username = username


class PolicyTests(SimpleTestCase):
    def test_refund_is_reserved_for_managers(self):
        self.assertTrue(policy.is_allowed(policy.ADMIN, "receipt.refund"))
        self.assertTrue(policy.is_allowed(policy.SUPERVISOR, "receipt.refund"))
        self.assertFalse(policy.is_allowed(policy.BILLING, "receipt.refund"))

    def test_clients_cannot_create_services(self):
        with self.assertRaises(AuthorizationError):
            policy.authorize(Actor(policy.CLIENT), "service.create")

    def test_technician_completes_installations(self):
        policy.authorize(Actor(policy.TECHNICIAN), "service.complete_installation")

    def test_missing_actor_is_denied(self):
        with self.assertRaises(AuthorizationError):
            policy.authorize(None, "plan.manage")

    def test_unknown_operation(self):
        with self.assertRaises(KeyError):
            policy.roles_for("service.teleport")

    def test_every_role_may_open_tickets(self):
        for role in get_user_model().Roles.values:
            self.assertTrue(policy.is_allowed(role, "ticket.create"))


class PrincipalCacheTests(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = PrincipalCache(
            backend=local_backend("principal-cache-tests", timeout=10, max_entries=2),
            clock=self.clock,
        )
        self.cache.clear()

    def test_lookup_before_and_after_expiry(self):
        self.cache.insert("1", "alice")
        self.clock.now = 9.9
        self.assertEqual(self.cache.lookup("1"), "alice")
        self.clock.now = 10
        self.assertIsNone(self.cache.lookup("1"))
        self.assertEqual(len(self.cache), 0)

    def test_insert_refreshes_expiry(self):
        self.cache.insert("1", "alice")
        self.clock.now = 8
        self.cache.insert("1", "alice v2")
        self.clock.now = 15
        self.assertEqual(self.cache.lookup("1"), "alice v2")

    def test_oldest_entry_is_evicted_when_full(self):
        self.cache.insert("1", "alice")
        self.cache.insert("2", "bob")
        self.cache.insert("3", "carol")
        self.assertNotIn("1", self.cache)
        self.assertIn("2", self.cache)
        self.assertIn("3", self.cache)

    def test_evict(self):
        self.cache.insert("1", "alice")
        self.assertTrue(self.cache.evict("1"))
        self.assertFalse(self.cache.evict("1"))

    def test_sweep_removes_only_expired(self):
        self.cache.insert("1", "alice")
        self.clock.now = 5
        self.cache.insert("2", "bob")
        self.clock.now = 12
        self.assertEqual(self.cache.sweep(), 1)
        self.assertEqual(len(self.cache), 1)

    def test_sweep_if_due_waits_for_ttl(self):
        self.cache.insert("1", "alice")
        self.clock.now = 11
        self.cache.insert("2", "bob")
        self.clock.now = 9
        self.assertEqual(self.cache.sweep_if_due(), 0)
        self.clock.now = 11
        self.assertEqual(self.cache.sweep_if_due(), 1)

    def test_clear(self):
        self.cache.insert("1", "alice")
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_default_backend_is_principals_alias(self):
        cache = PrincipalCache()
        self.assertIs(cache.backend, caches["principals"])
        self.assertEqual(cache.ttl_seconds, 300)


class ClearOnSignalsTests(SimpleTestCase):
    def setUp(self):
        self.original = signal.getsignal(signal.SIGUSR1)
        self.addCleanup(signal.signal, signal.SIGUSR1, self.original)
        self.cache = PrincipalCache(backend=local_backend("signal-tests", timeout=60))
        self.cache.insert("1", "alice")

    def test_signal_clears_cache_and_chains_previous_handler(self):
        received = []
        signal.signal(signal.SIGUSR1, lambda signum, frame: received.append(signum))
        clear_on_signals(self.cache, [signal.SIGUSR1])

        signal.getsignal(signal.SIGUSR1)(signal.SIGUSR1, None)

        self.assertEqual(len(self.cache), 0)
        self.assertEqual(received, [signal.SIGUSR1])

    def test_ignored_signal_stays_ignored(self):
        signal.signal(signal.SIGUSR1, signal.SIG_IGN)
        clear_on_signals(self.cache, [signal.SIGUSR1])

        signal.getsignal(signal.SIGUSR1)(signal.SIGUSR1, None)

        self.assertNotIn("1", self.cache)


class CachedJWTAuthenticationTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(
            username="tech", password="pass1234", role=User.Roles.TECHNICIAN
        )
        self.clock = FakeClock()
        self.cache = PrincipalCache(
            backend=local_backend("cached-jwt-tests", timeout=60), clock=self.clock
        )
        self.cache.clear()
        self.auth = CachedJWTAuthentication(cache=self.cache)
        self.token = RefreshToken.for_user(self.user).access_token

    def test_user_is_cached_after_first_lookup(self):
        user = self.auth.get_user(self.token)
        self.assertEqual(user.pk, self.user.pk)
        self.assertIn(principal_key(self.user.pk), self.cache)

    def test_cached_principal_served_until_expiry(self):
        self.auth.get_user(self.token)
        # Queryset updates bypass the eviction signal.
        get_user_model().objects.filter(pk=self.user.pk).update(is_active=False)
        self.assertEqual(self.auth.get_user(self.token).pk, self.user.pk)
        self.clock.now = 61
        with self.assertRaises(AuthenticationFailed):
            self.auth.get_user(self.token)

    def test_default_cache_comes_from_app_config(self):
        auth = CachedJWTAuthentication()
        self.assertIs(auth.cache, apps.get_app_config("accounts").principal_cache)

    def test_saving_user_evicts_cached_principal(self):
        cache = apps.get_app_config("accounts").principal_cache
        cache.insert(principal_key(self.user.pk), self.user)
        self.user.role = get_user_model().Roles.OPERATOR
        self.user.save()
        self.assertNotIn(principal_key(self.user.pk), cache)


class TokenAPITests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(
            username="billing", password="pass1234", role=User.Roles.BILLING
        )
        self.client = APIClient()

    def test_token_carries_role(self):
        response = self.client.post(
            reverse("token_obtain_pair"),
            {"username": "billing", "password": "pass1234"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["role"], "billing")
        self.assertIn("access", response.data)

    def test_bad_credentials(self):
        response = self.client.post(
            reverse("token_obtain_pair"),
            {"username": "billing", "password": "wrong"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_bearer_token_authenticates_requests(self):
        token = RefreshToken.for_user(self.user).access_token
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get(reverse("user-me"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["username"], "billing")


class UserAPITests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_user(
            username="admin", password="pass1234", role=User.Roles.ADMIN
        )
        self.operator = User.objects.create_user(
            username="operator", password="pass1234", role=User.Roles.OPERATOR
        )
        self.client = APIClient()

    def test_admin_lists_users(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(reverse("user-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_operator_cannot_manage_users(self):
        self.client.force_authenticate(user=self.operator)
        response = self.client.get(reverse("user-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_user_with_hashed_password(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            reverse("user-list"),
            {"username": "newclient", "password": "s3cret-pass", "role": "client"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        user = get_user_model().objects.get(username="newclient")
        self.assertTrue(user.check_password("s3cret-pass"))

    def test_update_role(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.put(
            reverse("user-update-role", args=[self.operator.pk]),
            {"role": "supervisor"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.operator.refresh_from_db()
        self.assertEqual(self.operator.role, "supervisor")

    def test_unauthenticated_error_envelope(self):
        response = self.client.get(reverse("user-list"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["code"], "not_authenticated")
        self.assertIn("detail", response.data)
