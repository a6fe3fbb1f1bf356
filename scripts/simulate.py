"""
Publish Storm Simulation

Fires concurrent price changes and menu publishes at a running API, then
checks that the snapshot history is contiguous (no duplicate or skipped
versions) and that every stored snapshot still verifies.

Run from project root: python scripts/simulate.py --publishes 20
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
ORGANIZATION_ID = "org-demo"
ACTOR_HEADERS = {"X-Actor-Id": "user-demo-owner"}
ITEM_IDS = ["item-tea", "item-coffee", "item-baklava"]


async def send_price_change(client: httpx.AsyncClient, num: int) -> dict[str, Any]:
    """Record a random price for a random demo item."""
    payload = {
        "item_id": random.choice(ITEM_IDS),
        "price": f"{random.randint(10, 200)}.{random.choice(['00', '50', '90'])}",
        "currency": "TRY",
        "reason": f"simulation #{num}",
    }
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/prices", json=payload, headers=ACTOR_HEADERS, timeout=30.0
        )
        return {
            "num": num,
            "kind": "price",
            "success": response.status_code == 201,
            "error": None if response.status_code == 201 else response.text[:100],
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {"num": num, "kind": "price", "success": False, "error": str(e)[:100],
                "time": round(time.time() - start_time, 3)}


async def send_publish(client: httpx.AsyncClient, num: int) -> dict[str, Any]:
    """Publish the demo menu."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/menu/publish",
            json={"organization_id": ORGANIZATION_ID, "notes": f"simulation #{num}"},
            headers=ACTOR_HEADERS,
            timeout=30.0,
        )
        data = response.json()
        return {
            "num": num,
            "kind": "publish",
            "success": response.status_code == 201,
            "version": data.get("version"),
            "error": None if response.status_code == 201 else data.get("detail"),
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {"num": num, "kind": "publish", "success": False, "error": str(e)[:100],
                "time": round(time.time() - start_time, 3)}


async def check_history(client: httpx.AsyncClient) -> bool:
    """Walk the full history and verify every snapshot."""
    versions: list[int] = []
    offset = 0
    while True:
        response = await client.get(
            f"{API_BASE_URL}/api/menu/snapshot",
            params={"organization_id": ORGANIZATION_ID, "history": "true", "limit": 100, "offset": offset},
            headers=ACTOR_HEADERS,
        )
        page = response.json()
        versions.extend(s["version"] for s in page["snapshots"])
        offset += len(page["snapshots"])
        if not page["snapshots"] or offset >= page["total"]:
            break

    versions.sort()
    contiguous = versions == list(range(1, len(versions) + 1))
    print(f"\n📚 Stored versions: {len(versions)} (contiguous: {'✅' if contiguous else '❌'})")

    invalid = []
    for version in versions:
        response = await client.get(
            f"{API_BASE_URL}/api/menu/snapshot",
            params={"organization_id": ORGANIZATION_ID, "version": version, "verify": "true"},
            headers=ACTOR_HEADERS,
        )
        if not response.json()["verification"]["is_valid"]:
            invalid.append(version)

    if invalid:
        print(f"❌ Versions failing verification: {invalid}")
    else:
        print("✅ Every snapshot verifies")
    return contiguous and not invalid


async def run_simulation(num_publishes: int, num_prices: int) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 PUBLISH STORM - CONCURRENT VERSIONING TEST")
    print("=" * 70)
    print(f"📋 Publishes: {num_publishes}   Price changes: {num_prices}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        if health.status_code != 200:
            print(f"❌ API not healthy: {health.text}")
            return {"success": False}

        calls = [send_publish(client, i + 1) for i in range(num_publishes)]
        calls += [send_price_change(client, i + 1) for i in range(num_prices)]
        random.shuffle(calls)
        results = await asyncio.gather(*calls)

        total_time = round(time.time() - start_time, 2)
        publishes = [r for r in results if r["kind"] == "publish"]
        prices = [r for r in results if r["kind"] == "price"]
        failed = [r for r in results if not r["success"]]

        print("\n" + "=" * 70)
        print("📊 SIMULATION RESULTS")
        print("=" * 70)
        print(f"\n✅ Publishes: {sum(r['success'] for r in publishes)}/{len(publishes)}")
        print(f"✅ Price changes: {sum(r['success'] for r in prices)}/{len(prices)}")
        print(f"⏱️  Total Time: {total_time}s")

        if failed:
            print("\n⚠️  Failures (showing first 5):")
            for f in failed[:5]:
                print(f"   {f['kind']} #{f['num']}: {f['error']}")

        history_ok = await check_history(client)

    print("=" * 70)
    return {
        "success": history_ok,
        "publishes": len(publishes),
        "failed": len(failed),
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Publish Storm Simulation")
    parser.add_argument("--publishes", type=int, default=20, help="Number of concurrent publishes")
    parser.add_argument("--prices", type=int, default=30, help="Number of concurrent price changes")
    args = parser.parse_args()

    outcome = asyncio.run(run_simulation(args.publishes, args.prices))
    sys.exit(0 if outcome["success"] else 1)
