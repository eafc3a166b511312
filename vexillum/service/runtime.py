from __future__ import annotations

import asyncio
import math
import threading
import time
from datetime import timedelta
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from vexillum.config import get_settings, reset_settings_cache
from vexillum.logging import get_logger
from vexillum.service.auth import AuthService
from vexillum.service.email import EmailService
from vexillum.service.keys import KeyManager
from vexillum.service.magic_links import MagicLinkIssuer
from vexillum.service.passwords import CredentialVerifier
from vexillum.service.principal import PrincipalResolver
from vexillum.service.tokens import TokenService
from vexillum.storage.memory import MemoryStore
from vexillum.storage.postgres import PostgresStore
from vexillum.storage.redis_cache import RedisCache

logger = get_logger(__name__)

# local buckets are swept for fully refilled entries once the table reaches this size
LOCAL_BUCKET_PRUNE_SIZE = 1024


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[RedisCache] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for rate limits; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=f"Running without Redis under {fallback_mode}; rate limits are in-memory only.",
                mode=fallback_mode,
            )

        # KeyMaterialError propagates: no keys, no service
        self.keys = KeyManager(
            self.settings.resolved_private_key_path(),
            self.settings.resolved_public_key_path(),
        ).load_key_pair()
        self.tokens = TokenService(
            self.keys,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
            leeway_seconds=self.settings.token_leeway_seconds,
        )
        self.passwords = CredentialVerifier()
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            base_url=self.settings.app_base_url,
            link_ttl_hours=self.settings.magic_link_ttl_hours,
        )
        self.magic_links = MagicLinkIssuer(
            self.store,
            ttl=timedelta(hours=self.settings.magic_link_ttl_hours),
            dispatcher=self.email.send_magic_link,
        )
        self.principals = PrincipalResolver(self.tokens)
        self.auth = AuthService(self.store, self.tokens, self.passwords, self.magic_links)

        self._local_rate_limits: Dict[str, Tuple[float, float, float]] = {}
        self._local_rate_limit_lock = asyncio.Lock()

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=self.cache is not None,
            email_configured=self.email.is_configured,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )

    async def bootstrap_admin(self) -> None:
        """Create the configured admin principal if it does not exist yet."""
        email, password = self.settings.admin_email, self.settings.admin_password
        if not email or not password:
            return
        user, status = await self.auth.ensure_admin(email, password)
        logger.info("admin_bootstrap", user_id=str(user.id), status=status)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


async def close_runtime() -> None:
    """Release pooled connections held by the current runtime."""
    global runtime
    with _runtime_lock:
        current, runtime = runtime, None
    if current is None:
        return
    if current.cache is not None:
        await current.cache.close()
    if isinstance(current.store, PostgresStore):
        current.store.close()


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            if runtime.cache is not None:
                try:
                    loop = asyncio.get_running_loop()
                    loop.create_task(runtime.cache.close())
                except RuntimeError:
                    asyncio.run(runtime.cache.close())
            if isinstance(runtime.store, PostgresStore):
                runtime.store.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


async def check_rate_limit(
    runtime: Runtime,
    key: str,
    limit: int,
    window_seconds: int,
    *,
    cost: int = 1,
) -> Tuple[bool, int]:
    """Token-bucket rate limit; returns (allowed, retry_after_seconds).

    Uses Redis when available and an in-process bucket otherwise.
    """
    if limit <= 0:
        return True, 0
    if window_seconds <= 0:
        logger.warning(
            "rate_limit_invalid_window",
            key=key,
            window_seconds=window_seconds,
            message="Invalid rate limit window_seconds; defaulting to 60 seconds",
        )
        window_seconds = 60
    if runtime.cache:
        return await runtime.cache.check_rate_limit(key, limit, window_seconds, cost=cost)

    now = time.monotonic()
    refill_rate = float(limit) / float(window_seconds)
    async with runtime._local_rate_limit_lock:
        buckets = runtime._local_rate_limits
        tokens, last_ts, _ = buckets.get(key, (float(limit), now, now))
        tokens = min(float(limit), tokens + max(0.0, now - last_ts) * refill_rate)
        allowed = tokens >= cost
        if allowed:
            tokens -= cost
        buckets[key] = (tokens, now, now + (limit - tokens) / refill_rate)
        if len(buckets) >= LOCAL_BUCKET_PRUNE_SIZE:
            _prune_local_buckets(buckets, now)
        retry_after = 0 if allowed else max(1, math.ceil((cost - tokens) / refill_rate))
    return allowed, retry_after


def _prune_local_buckets(buckets: Dict[str, Tuple[float, float, float]], now: float) -> None:
    """Drop buckets that have refilled; a missing key starts full anyway."""
    stale = [key for key, (_, _, full_at) in buckets.items() if full_at <= now]
    for key in stale:
        del buckets[key]
    if stale:
        logger.debug("rate_limit_buckets_pruned", removed=len(stale), remaining=len(buckets))
