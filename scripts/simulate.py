"""
Load Simulation Script

Registers a throwaway store, approves it, publishes a small menu and then
fires concurrent storefront orders at it, reporting success rate and
response times.

Run from project root against a running API:
    python scripts/simulate.py --orders 50
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Configuration
API_BASE_URL = os.environ.get("ORDERDESK_URL", "http://localhost:8001")
ADMIN_TOKEN = os.environ.get("ADMIN_API_KEY", "change-me-admin-key")
TOTAL_ORDERS = 50

FIRST_NAMES = ["Ana", "Bruno", "Carla", "Diego", "Elisa", "Fabio", "Gabriela", "Heitor", "Iara", "João"]
LAST_NAMES = ["Silva", "Santos", "Oliveira", "Souza", "Lima", "Pereira", "Costa", "Almeida"]
STREETS = ["Rua Augusta", "Av. Paulista", "Rua da Consolação", "Rua Oscar Freire", "Av. Rebouças"]
NEIGHBORHOODS = ["Centro", "Jardins", "Pinheiros", "Vila Mariana", "Moema"]
MENU = [
    {"name": "Pizza Margherita", "price": 49.90, "requires_preparation": True},
    {"name": "Pizza Calabresa", "price": 52.90, "requires_preparation": True},
    {"name": "Lasanha Bolonhesa", "price": 39.90, "requires_preparation": True},
    {"name": "Pudim", "price": 14.90, "requires_preparation": False},
    {"name": "Refrigerante Lata", "price": 6.50, "requires_preparation": False},
]


def random_checkout(product_ids: list[str]) -> dict[str, Any]:
    """Build a random storefront checkout body."""
    source = random.choice(["online", "online", "pickup"])
    body: dict[str, Any] = {
        "customer_name": f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
        "customer_phone": f"(11) 9{random.randint(1000, 9999)}-{random.randint(1000, 9999)}",
        "source": source,
        "payment_method": random.choice(["pix", "cash", "card_on_delivery"]),
        "items": [
            {"product_id": pid, "quantity": random.randint(1, 3)}
            for pid in random.sample(product_ids, k=random.randint(1, 3))
        ],
    }
    if source == "online":
        body["address"] = {
            "street": random.choice(STREETS),
            "number": str(random.randint(1, 2000)),
            "neighborhood": random.choice(NEIGHBORHOODS),
            "city": "São Paulo",
            "state": "SP",
        }
    return body


# =============================================================================
# STORE SETUP
# =============================================================================

async def setup_store(client: httpx.AsyncClient) -> tuple[str, list[str]]:
    """Register, approve and publish a store. Returns (slug, product ids)."""
    suffix = random.randint(10000, 99999)
    response = await client.post(
        f"{API_BASE_URL}/api/companies/register",
        json={
            "name": f"Simulação {suffix}",
            "owner_email": f"owner{suffix}@example.com",
            "slug": f"simulacao-{suffix}",
        },
    )
    response.raise_for_status()
    company = response.json()
    store_headers = {"X-Store-Token": company["api_token"]}
    print(f"   ✅ Store registered: {company['slug']}")

    response = await client.post(
        f"{API_BASE_URL}/api/admin/companies/{company['id']}/approve",
        headers={"X-Admin-Token": ADMIN_TOKEN},
    )
    response.raise_for_status()
    print("   ✅ Store approved")

    response = await client.post(
        f"{API_BASE_URL}/api/store/categories",
        json={"name": "Cardápio"},
        headers=store_headers,
    )
    response.raise_for_status()
    category_id = response.json()["id"]

    product_ids = []
    for item in MENU:
        response = await client.post(
            f"{API_BASE_URL}/api/store/products",
            json={**item, "category_id": category_id},
            headers=store_headers,
        )
        response.raise_for_status()
        product_ids.append(response.json()["id"])
    print(f"   ✅ {len(product_ids)} products created")

    response = await client.patch(
        f"{API_BASE_URL}/api/store/settings",
        json={"menu_published": True, "is_open": True, "min_order_value": 0},
        headers=store_headers,
    )
    response.raise_for_status()
    print("   ✅ Menu published")
    return company["slug"], product_ids


# =============================================================================
# ORDER FIRING
# =============================================================================

async def send_order(
    client: httpx.AsyncClient,
    slug: str,
    product_ids: list[str],
    order_num: int,
) -> dict[str, Any]:
    """Place one storefront order and time it."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/public/{slug}/orders",
            json=random_checkout(product_ids),
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)
    if response.status_code == 201:
        order = response.json()["order"]
        return {
            "order_num": order_num,
            "success": True,
            "order_id": order["id"],
            "total": order["total"],
            "time": elapsed,
        }
    return {
        "order_num": order_num,
        "success": False,
        "error": response.text[:100],
        "time": elapsed,
    }


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """Run the concurrent order simulation."""
    print("=" * 70)
    print("🔥 LOAD SIMULATION - CONCURRENT STOREFRONT ORDERS")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n🏪 Preparing store...")
        slug, product_ids = await setup_store(client)

        print("\n🚀 Firing orders...\n")
        start_time = time.time()
        results = await asyncio.gather(
            *(send_order(client, slug, product_ids, i + 1) for i in range(num_orders))
        )
        total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        times = [r["time"] for r in successful]
        print("\n📈 Performance Metrics:")
        print(f"   Average Response: {round(sum(times) / len(times), 3)}s")
        print(f"   Fastest: {min(times)}s")
        print(f"   Slowest: {max(times)}s")
        print(f"   💰 Total Revenue: R$ {sum(r['total'] for r in successful):.2f}")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f['error']}")

    print("\n" + "=" * 70)
    print(f"🔍 Store dashboard feed: ws://.../ws/companies/<id>?token=...  (slug {slug})")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    """Pre-flight health check."""
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
    if response.status_code != 200:
        print(f"   ❌ Failed: {response.text}")
        return False
    data = response.json()
    print(f"   ✅ Status: {data.get('status')}")
    print(f"   Database: {data.get('database')}")
    print(f"   Redis: {data.get('redis')}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--skip-health", action="store_true", help="Skip the health check")
    args = parser.parse_args()

    if not args.skip_health:
        print("\n1️⃣ Health Check...")
        if not asyncio.run(check_health()):
            print("\n❌ Pre-flight check failed. Fix issues before running simulation.")
            sys.exit(1)

    outcome = asyncio.run(run_simulation(args.orders))
    sys.exit(0 if outcome["failed"] == 0 else 1)
