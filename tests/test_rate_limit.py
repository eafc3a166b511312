from types import SimpleNamespace

from vexillum.service import runtime as runtime_module
from vexillum.service.runtime import check_rate_limit, get_runtime


async def test_local_bucket_allows_up_to_limit():
    runtime = get_runtime()
    assert runtime.cache is None

    assert await check_rate_limit(runtime, "login:a@example.com", 2, 60) == (True, 0)
    assert await check_rate_limit(runtime, "login:a@example.com", 2, 60) == (True, 0)
    allowed, retry_after = await check_rate_limit(runtime, "login:a@example.com", 2, 60)

    assert not allowed
    assert 1 <= retry_after <= 30


async def test_buckets_are_per_key():
    runtime = get_runtime()
    assert (await check_rate_limit(runtime, "login:a@example.com", 1, 60))[0]
    assert not (await check_rate_limit(runtime, "login:a@example.com", 1, 60))[0]
    assert (await check_rate_limit(runtime, "login:b@example.com", 1, 60))[0]


async def test_zero_limit_disables_the_check():
    runtime = get_runtime()
    for _ in range(5):
        assert await check_rate_limit(runtime, "magic_link:x@example.com", 0, 60) == (True, 0)


async def test_invalid_window_falls_back_to_a_minute():
    runtime = get_runtime()
    assert (await check_rate_limit(runtime, "k", 1, 0))[0]
    allowed, retry_after = await check_rate_limit(runtime, "k", 1, 0)
    assert not allowed
    assert retry_after <= 60


async def test_refilled_local_buckets_are_pruned(monkeypatch):
    runtime = get_runtime()
    now = [1000.0]
    monkeypatch.setattr(runtime_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    monkeypatch.setattr(runtime_module, "LOCAL_BUCKET_PRUNE_SIZE", 3)

    for i in range(2):
        await check_rate_limit(runtime, f"login:{i}@example.com", 2, 60)
    assert len(runtime._local_rate_limits) == 2

    # one token refills in 30s, so both buckets are full again after that
    now[0] += 31
    await check_rate_limit(runtime, "login:fresh@example.com", 2, 60)

    assert list(runtime._local_rate_limits) == ["login:fresh@example.com"]


async def test_draining_buckets_survive_a_sweep(monkeypatch):
    runtime = get_runtime()
    now = [1000.0]
    monkeypatch.setattr(runtime_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    monkeypatch.setattr(runtime_module, "LOCAL_BUCKET_PRUNE_SIZE", 2)

    await check_rate_limit(runtime, "login:busy@example.com", 1, 60)
    now[0] += 10
    await check_rate_limit(runtime, "login:other@example.com", 1, 60)

    assert set(runtime._local_rate_limits) == {
        "login:busy@example.com",
        "login:other@example.com",
    }
    assert not (await check_rate_limit(runtime, "login:busy@example.com", 1, 60))[0]
