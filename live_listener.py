"""Live check: connect to /ws/updates and print every pushed update."""

import asyncio
import json
import os

import websockets


HOST = os.environ.get("NESTWATCH_HOST", "localhost:8000")
UPDATES_URI = f"ws://{HOST}/ws/updates"


def _print_update(data: dict) -> None:
    drones = data.get("drones", [])
    restricted = [d for d in drones if d.get("restrictedEver")]

    print("=" * 70)
    print(f"[UPDATE] {data.get('timestamp')}  drones={len(drones)}  restricted={len(restricted)}")
    print("=" * 70)

    for drone in sorted(restricted, key=lambda d: d.get("closestDistance", 0)):
        pilot = drone.get("pilot") or {}
        name = f"{pilot.get('firstName', '?')} {pilot.get('lastName', '?')}" if pilot else "unknown pilot"
        print(
            f"  {drone['id']}  closest={drone['closestDistance'] / 1000:.1f}m  "
            f"since={drone.get('firstRestrictedAt')}  {name}"
        )
    print()


async def main() -> None:
    async with websockets.connect(UPDATES_URI) as ws:
        print(f"[LISTENER] Connected to {UPDATES_URI}, waiting for updates...\n")
        while True:
            raw = await ws.recv()
            if raw == "pong":
                continue
            data = json.loads(raw)
            if data.get("event") == "update":
                _print_update(data)


if __name__ == "__main__":
    asyncio.run(main())
