#!/usr/bin/env python3
"""NetVision measurement simulator.

Generates realistic connectivity measurement traffic for testing the server.

Usage:
    # 5 users walking around Lyon for 10 minutes
    python -m tools.simulator.simulate --server http://localhost:8000 --token dev-token --users 5 --duration 600

    # Stress test: 50 users, max rate, stored measurements
    python -m tools.simulator.simulate --token dev-token --users 50 --measurements-per-minute 60 --save

    # Several accounts, specific location
    python -m tools.simulator.simulate --token tok-a --token tok-b --center 48.8566,2.3522
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
from dataclasses import dataclass

import httpx


@dataclass
class SimUser:
    token: str
    lat: float
    lon: float
    bearing: float
    speed_mps: float
    wifi: bool = False
    sent: int = 0
    errors: int = 0
    best_zone_hits: int = 0


def signal_at(lat: float, lon: float, center: tuple[float, float]) -> float:
    """Signal strength in [0, 1], decaying away from a "tower" at the center."""
    dlat = (lat - center[0]) * 111_000
    dlon = (lon - center[1]) * 111_000 * math.cos(math.radians(center[0]))
    distance_km = math.hypot(dlat, dlon) / 1000
    return max(0.0, min(1.0, 1.0 - distance_km / 8 + random.uniform(-0.1, 0.1)))


def make_measurement_payload(user: SimUser, strength: float, save: bool) -> dict:
    """Create a single measurement JSON payload."""
    payload = {
        "latitude": round(user.lat, 6),
        "longitude": round(user.lon, 6),
        "timestamp": int(time.time() * 1000),
        "downloadSpeed": round(strength * random.uniform(20, 120), 1),
        "uploadSpeed": round(strength * random.uniform(5, 40), 1),
        "latency": round(20 + (1 - strength) * random.uniform(50, 300)),
        "saveImmediately": save,
    }
    if user.wifi:
        payload["networkType"] = "wifi"
    else:
        payload.update({
            "networkType": "cellular",
            "provider": random.choice(["Orange", "SFR", "Free", "Bouygues"]),
            "rsrq": round(-20 + strength * 17, 1),
            "sinr": round(-10 + strength * 40, 1),
            "cqi": round(strength * 15),
        })
    return payload


def move_user(user: SimUser, dt_seconds: float) -> None:
    """Move a user along their current bearing, with random turns."""
    user.bearing = (user.bearing + random.uniform(-30, 30)) % 360

    # Walking to cycling: 1-6 m/s
    user.speed_mps = max(1.0, min(6.0, user.speed_mps + random.uniform(-0.5, 0.5)))

    distance_m = user.speed_mps * dt_seconds
    bearing_rad = math.radians(user.bearing)

    # Approximate: 1 degree latitude ≈ 111,000 m
    dlat = (distance_m * math.cos(bearing_rad)) / 111_000
    dlon = (distance_m * math.sin(bearing_rad)) / (111_000 * math.cos(math.radians(user.lat)))

    user.lat += dlat
    user.lon += dlon


async def run_user(
    client: httpx.AsyncClient,
    user: SimUser,
    server_url: str,
    center: tuple[float, float],
    measurements_per_minute: float,
    duration_seconds: float,
    save: bool,
) -> None:
    """Simulate a single user sending measurements."""
    interval = 60.0 / measurements_per_minute
    end_time = time.monotonic() + duration_seconds
    headers = {"authorization": f"Bearer {user.token}"}

    while time.monotonic() < end_time:
        move_user(user, interval)
        payload = make_measurement_payload(user, signal_at(user.lat, user.lon, center), save)

        try:
            resp = await client.post(f"{server_url}/api/v1/measurements", json=payload, headers=headers)
            if resp.status_code == 200:
                user.sent += 1
                if resp.json()["data"]["bestZone"]["hasData"]:
                    user.best_zone_hits += 1
            else:
                user.errors += 1
        except httpx.RequestError:
            user.errors += 1

        await asyncio.sleep(interval)


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lon = args.center
    users = []
    for i in range(args.users):
        # Scatter users within radius of center
        angle = random.uniform(0, 2 * math.pi)
        dist_km = random.uniform(0, args.radius_km)
        lat = center_lat + (dist_km / 111.0) * math.cos(angle)
        lon = center_lon + (dist_km / (111.0 * math.cos(math.radians(center_lat)))) * math.sin(angle)

        users.append(SimUser(
            token=args.token[i % len(args.token)],
            lat=lat,
            lon=lon,
            bearing=random.uniform(0, 360),
            speed_mps=random.uniform(1, 4),
            wifi=random.random() < args.wifi_ratio,
        ))

    print(f"Starting simulation: {args.users} users, {args.measurements_per_minute} measurements/min each")
    print(f"  Center: {center_lat:.4f}, {center_lon:.4f}")
    print(f"  Radius: {args.radius_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print(f"  Accounts: {len(args.token)}, saving: {args.save}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        tasks = [
            run_user(client, user, args.server, args.center, args.measurements_per_minute,
                     args.duration, args.save)
            for user in users
        ]
        await asyncio.gather(*tasks)

        elapsed = time.monotonic() - start
        total_sent = sum(u.sent for u in users)
        total_errors = sum(u.errors for u in users)

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Total measurements sent: {total_sent}")
        print(f"  Best zone found: {sum(u.best_zone_hits for u in users)}")
        print(f"  Total errors: {total_errors}")
        print(f"  Throughput: {total_sent / elapsed:.1f} measurements/sec")

        try:
            resp = await client.get(f"{args.server}/api/v1/stats")
        except httpx.RequestError as exc:
            print(f"\nCould not fetch server stats: {exc}")
            return
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Measurements scored: {stats['measurements_scored']}")
            print(f"  Measurements stored: {stats['measurements_stored']}")
            print(f"  Rejected: {stats['measurements_rejected']}")
            print(f"  Active users (single): {stats['active_users']['single']}")
            print(f"  Active users (stream): {stats['active_users']['stream']}")


def main():
    parser = argparse.ArgumentParser(description="NetVision measurement simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--token", action="append", required=True,
                        help="API token (repeat for several accounts)")
    parser.add_argument("--users", type=int, default=5, help="Number of simulated users")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--measurements-per-minute", type=float, default=10,
                        help="Measurements per minute per user")
    parser.add_argument("--center", type=str, default="45.764,4.835",
                        help="Center lat,lon (default: Lyon)")
    parser.add_argument("--radius-km", type=float, default=3.0, help="Scatter radius in km")
    parser.add_argument("--wifi-ratio", type=float, default=0.2,
                        help="Share of users measuring over Wi-Fi (default: 0.2)")
    parser.add_argument("--save", action="store_true", help="Persist every measurement")

    args = parser.parse_args()

    # Parse center
    lat, lon = args.center.split(",")
    args.center = (float(lat), float(lon))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
