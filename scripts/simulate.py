"""
Checkout Burst Simulation

Fires concurrent checkout requests at a running API and reports how many
orders were accepted, how many were blocked by the subscription quota and
how many failed for other reasons. With a business close to its limit the
accepted count must equal the remaining slots, however many requests race.

Run from project root:
    python scripts/simulate.py --business biz-1 --dishes dish-1,dish-2 --orders 50

Version: 1.0.0
"""

import asyncio
import random
import time
import argparse
from collections import Counter
from datetime import datetime
from typing import Any, Optional

import httpx

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50

# Sample data for random orders
FIRST_NAMES = ["Asha", "Rohan", "Priya", "Vikram", "Meera", "Arjun", "Kavya", "Nikhil", "Sneha", "Dev"]
LAST_NAMES = ["Rao", "Sharma", "Iyer", "Patel", "Nair", "Reddy", "Gupta", "Menon", "Das", "Kapoor"]
STREETS = ["MG Road", "Brigade Road", "Church Street", "Residency Road", "Indiranagar 100ft Road"]


def generate_random_customer() -> dict[str, str]:
    """Generate random customer info."""
    return {
        "name": f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
        "phone": f"+9198{random.randint(10000000, 99999999)}",
        "address": f"{random.randint(1, 999)} {random.choice(STREETS)}, Bengaluru",
    }


def generate_checkout_payload(
    business_id: str,
    dish_ids: list[str],
    coupon_code: Optional[str] = None,
    delivery: bool = False,
) -> dict[str, Any]:
    """Generate a payload for the /api/orders endpoint."""
    customer = generate_random_customer()
    chosen = random.sample(dish_ids, k=random.randint(1, len(dish_ids)))

    payload = {
        "business_id": business_id,
        "customer_name": customer["name"],
        "customer_phone": customer["phone"],
        "delivery_type": "delivery" if delivery else "pickup",
        "items": [{"dish_id": dish_id, "quantity": random.randint(1, 3)} for dish_id in chosen],
        "notes": random.choice([None, "Extra spicy", "No onions", "Call on arrival"]),
    }
    if delivery:
        payload["delivery_address"] = customer["address"]
        payload["distance_km"] = round(random.uniform(0.5, 8.0), 1)
    if coupon_code:
        payload["coupon_code"] = coupon_code
    return payload


async def send_checkout(
    client: httpx.AsyncClient,
    order_num: int,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Send one checkout request and classify the outcome."""
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)
        body = response.json()

        if response.status_code == 201:
            order = body["data"]["order"]
            return {
                "order_num": order_num,
                "outcome": "accepted",
                "order_id": order["id"],
                "total": order["total_cents"],
                "time": elapsed,
            }

        return {
            "order_num": order_num,
            "outcome": body.get("error", {}).get("code", f"HTTP_{response.status_code}"),
            "error": body.get("error", {}).get("message", response.text[:100]),
            "time": elapsed,
        }
    except (httpx.HTTPError, ValueError) as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "order_num": order_num,
            "outcome": "TRANSPORT_ERROR",
            "error": str(e)[:100],
            "time": elapsed,
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    business_id: str,
    dish_ids: list[str],
    num_orders: int = TOTAL_ORDERS,
    coupon_code: Optional[str] = None,
    delivery: bool = False,
) -> dict[str, Any]:
    """
    Fire `num_orders` concurrent checkouts for one business.

    Args:
        business_id: Business receiving the orders
        dish_ids: Dishes to pick carts from
        num_orders: Number of concurrent checkouts
        coupon_code: Coupon applied to every cart
        delivery: Send delivery orders instead of pickup
    """
    print("=" * 70)
    print("🔥 CHECKOUT BURST - CONCURRENT QUOTA TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🏪 Business: {business_id}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        before = await client.get(f"{API_BASE_URL}/api/subscriptions/{business_id}/usage")
        if before.status_code == 200:
            usage = before.json()
            print(f"\n📊 Quota before: {usage['current']}/{usage['limit'] or '∞'} ({usage['tier']})")

        print("\n🚀 Firing checkouts...\n")
        tasks = [
            send_checkout(
                client,
                i + 1,
                generate_checkout_payload(business_id, dish_ids, coupon_code, delivery),
            )
            for i in range(num_orders)
        ]
        results = await asyncio.gather(*tasks)

        after = await client.get(f"{API_BASE_URL}/api/subscriptions/{business_id}/usage")

    total_time = round(time.time() - start_time, 2)
    outcomes = Counter(r["outcome"] for r in results)
    accepted = [r for r in results if r["outcome"] == "accepted"]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Accepted: {outcomes['accepted']}/{num_orders}")
    print(f"🚫 Quota-blocked: {outcomes['ORDER_LIMIT_REACHED']}/{num_orders}")
    for outcome, count in sorted(outcomes.items()):
        if outcome not in ("accepted", "ORDER_LIMIT_REACHED"):
            print(f"⚠️  {outcome}: {count}")
    print(f"⏱️  Total Time: {total_time}s")

    if after.status_code == 200:
        usage = after.json()
        print(f"\n📊 Quota after: {usage['current']}/{usage['limit'] or '∞'}")

    if accepted:
        avg_time = round(sum(r["time"] for r in accepted) / len(accepted), 3)
        revenue = sum(r["total"] for r in accepted)
        print(f"\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in accepted)}s")
        print(f"   Slowest: {max(r['time'] for r in accepted)}s")
        print(f"   💰 Total Revenue: {revenue / 100:.2f}")

    failed = [r for r in results if r["outcome"] not in ("accepted", "ORDER_LIMIT_REACHED")]
    if failed:
        print(f"\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']} [{f['outcome']}]: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - all export tasks should complete")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_orders,
        "accepted": outcomes["accepted"],
        "quota_blocked": outcomes["ORDER_LIMIT_REACHED"],
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Checkout Burst Simulation")
    parser.add_argument("--business", required=True, help="Business id")
    parser.add_argument("--dishes", required=True, help="Comma-separated dish ids")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--coupon", default=None, help="Coupon code applied to every cart")
    parser.add_argument("--delivery", action="store_true", help="Send delivery orders")
    args = parser.parse_args()

    asyncio.run(
        run_simulation(
            business_id=args.business,
            dish_ids=[d.strip() for d in args.dishes.split(",") if d.strip()],
            num_orders=args.orders,
            coupon_code=args.coupon,
            delivery=args.delivery,
        )
    )
