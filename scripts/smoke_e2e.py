#!/usr/bin/env python3
"""
Smoke E2E test — exercises scheduling against a running API.

Workers are stopped first, so nothing is rendered or uploaded; the run only
checks that channels get topped up to their daily target exactly once.

Env vars:
  BASE_URL       (default http://localhost:8000)
"""
from __future__ import annotations

import json
import os
import sys
import time
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")

SMOKE_CHANNEL = f"UC_smoke_{int(time.time())}"

# ── Helpers ──────────────────────────────────────────────────

class SmokeError(Exception):
    pass


def _req(method: str, path: str, body: dict | None = None, expect: int | None = None) -> dict | list:
    url = f"{BASE_URL}{path}"
    data = json.dumps(body).encode() if body is not None else None
    req = Request(url, data=data, headers={"Content-Type": "application/json"}, method=method)
    try:
        with urlopen(req, timeout=30) as resp:
            raw = resp.read().decode()
            return json.loads(raw) if raw else {}
    except HTTPError as e:
        raw = e.read().decode()[:500]
        if expect is not None and e.code == expect:
            return json.loads(raw) if raw else {}
        raise SmokeError(f"{method} {path} → {e.code}: {raw}")
    except URLError as e:
        raise SmokeError(f"{method} {path} → URLError: {e}")


def GET(path: str) -> dict | list:
    return _req("GET", path)


def POST(path: str, body: dict | None = None, expect: int | None = None) -> dict | list:
    return _req("POST", path, body, expect)


def PATCH(path: str, body: dict) -> dict | list:
    return _req("PATCH", path, body)


def step(name: str):
    print(f"\n{'='*60}")
    print(f"  STEP: {name}")
    print(f"{'='*60}")


def ok(msg: str):
    print(f"  ✅ {msg}")


def fail(msg: str):
    print(f"  ❌ {msg}")
    raise SmokeError(msg)


def channel_jobs() -> list:
    return GET(f"/api/queue/jobs?state=waiting&state=delayed&channel_id={SMOKE_CHANNEL}")


# ── Steps ────────────────────────────────────────────────────

def step1_health():
    step("1. Health check")
    data = GET("/healthz")
    if data.get("status") != "ok":
        fail(f"Services degraded: {data.get('services')}")
    ok("Database, Redis and queue reachable")


def step2_stop_workers():
    step("2. Stop workers")
    data = POST("/api/workers/stop")
    if data.get("workers_enabled") is not False:
        fail(f"Workers still enabled: {data}")
    ok(f"Workers stopped ({data.get('active_jobs')} jobs still in flight)")


def step3_register_channel():
    step("3. Register channel")
    POST("/api/channels", {
        "id": SMOKE_CHANNEL,
        "name": f"Smoke {SMOKE_CHANNEL}",
        "refresh_token": "smoke-token",
        "niches": ["Motivational", "Finance"],
    })
    ok(f"Channel {SMOKE_CHANNEL} created")


def step4_validation():
    step("4. videos-per-day validation")
    POST(f"/admin/channels/{SMOKE_CHANNEL}/videos-per-day", {"videosPerDay": 0}, expect=400)
    POST("/admin/channels/UC_does_not_exist/videos-per-day", {"videosPerDay": 2}, expect=404)
    ok("400 for out-of-range, 404 for unknown channel")


def step5_set_target():
    step("5. Set videos-per-day = 2")
    data = POST(f"/admin/channels/{SMOKE_CHANNEL}/videos-per-day", {"videosPerDay": 2})
    if data.get("scheduled") != 2:
        fail(f"Expected 2 scheduled jobs, got {data}")
    ok("2 jobs scheduled")


def step6_reschedule_is_idempotent():
    step("6. Reschedule twice")
    data = POST(f"/admin/channels/{SMOKE_CHANNEL}/reschedule")
    if data.get("scheduled") != 0:
        fail(f"Reschedule added jobs on a full channel: {data}")
    jobs = channel_jobs()
    if len(jobs) != 2:
        fail(f"Expected 2 queued jobs for channel, found {len(jobs)}")
    for job in jobs:
        print(f"     {job['id']}  {job['niche']:<14} at {job['scheduled_at']}")
    ok("Queue unchanged")


def step7_disable_channel():
    step("7. Disable channel")
    data = PATCH(f"/api/channels/{SMOKE_CHANNEL}", {"enabled": False})
    if data.get("enabled") is not False:
        fail(f"Channel still enabled: {data}")
    ok("Channel disabled (queued jobs are left in place)")


def main():
    print(f"\n🔬 Smoke E2E Test — {BASE_URL}\n")

    try:
        step1_health()
        step2_stop_workers()
        step3_register_channel()
        step4_validation()
        step5_set_target()
        step6_reschedule_is_idempotent()
        step7_disable_channel()
        print(f"\n  📊 Queue stats: {GET('/api/queue/stats')}")
        print("\n  🎉 Smoke test passed\n")
    except SmokeError as e:
        print(f"\n{'='*60}")
        print(f"  ❌ FAIL: {e}")
        print(f"{'='*60}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\n  ⏹ Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
