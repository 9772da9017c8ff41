import asyncio
import csv
import logging
import os
import random
from typing import Dict, List

from errands.models import Coordinates, Place
from errands.repository import InMemoryErrandRepository
from lifecycle.coordinator import ErrandLifecycleCoordinator
from lifecycle.policy import LifecyclePolicy
from notifications.dispatcher import NotificationDispatcher
from notifications.store import InMemoryNotificationStore
from tracking.location_store import InMemoryLocationStore
from tracking.location_tracker import LocationTracker

class MockPushSender:
    def __init__(self):
        self.sent = []

    async def send(self, notification):
        self.sent.append(notification)
        return True

class WalkingPositionSource:
    """
    Moves each runner a fixed fraction of the way towards its current target on every read.
    """

    def __init__(self, start: Dict[str, Coordinates], step: float = 0.25):
        self.positions = dict(start)
        self.targets: Dict[str, Coordinates] = {}
        self.step = step

    def head_to(self, actor_id: str, target: Coordinates):
        self.targets[actor_id] = target

    async def current_position(self, actor_id: str) -> Coordinates:
        here = self.positions[actor_id]
        target = self.targets.get(actor_id)
        if target is not None:
            here = Coordinates.of(
                here.latitude + (target.latitude - here.latitude) * self.step,
                here.longitude + (target.longitude - here.longitude) * self.step,
            )
            self.positions[actor_id] = here
        return here

# Lagos mainland / island addresses
PLACES = [
    Place.of("12 Herbert Macaulay Way, Yaba", 6.5244, 3.3792),
    Place.of("3 Akin Adesola St, Victoria Island", 6.4500, 3.4000),
    Place.of("Computer Village, Ikeja", 6.5965, 3.3421),
    Place.of("Lekki Phase 1 Gate", 6.4478, 3.4723),
    Place.of("Surulere Stadium", 6.4969, 3.3614),
]

def pick_route(rng: random.Random) -> List[Place]:
    return rng.sample(PLACES, 2)

async def run_simulation(errand_count: int = 3, seed: int = 7):
    print("=== STARTING END-TO-END ERRAND SIMULATION ===")
    rng = random.Random(seed)

    # 1. Configure System (fast cadence so the run finishes in seconds)
    policy = LifecyclePolicy(active_interval_ms=50, status_refresh_interval_ms=200)
    repository = InMemoryErrandRepository()
    notifications = InMemoryNotificationStore()
    location_store = InMemoryLocationStore()
    runners = {f"runner_{i}": place.coordinates for i, place in enumerate(PLACES[:errand_count], start=1)}
    source = WalkingPositionSource(runners)
    tracker = LocationTracker(source, location_store)
    dispatcher = NotificationDispatcher(notifications, repository, MockPushSender())
    coordinator = ErrandLifecycleCoordinator(repository, dispatcher, tracker=tracker, policy=policy)

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "errand_results.csv")

    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["errand_id", "code", "runner_id", "status", "distance_km", "eta"])

        for index, runner_id in enumerate(runners, start=1):
            pickup, dropoff = pick_route(rng)

            # 2. Requester posts an errand, runner claims it by code
            errand = await coordinator.create_errand(
                f"buyer_{index}", pickup, dropoff, errand_type="delivery", price_estimate=1500.0
            )
            print(f"Errand {errand.id[:8]} created, code {errand.transaction_code}: {pickup.address} -> {dropoff.address}")

            source.head_to(runner_id, pickup.coordinates)
            outcome = await coordinator.claim_by_code(errand.transaction_code, runner_id)
            await asyncio.sleep(0.2)
            eta = coordinator.eta_feed.latest(errand.id)
            if eta is not None:
                print(f"  {runner_id} accepted, {eta.distance_label} from pickup, ETA {eta.eta_label}")

            # 3. Runner drives the errand, tracker keeps the ETA current
            source.head_to(runner_id, dropoff.coordinates)
            for step in (coordinator.mark_picked_up, coordinator.start_delivery):
                outcome = await step(errand.id, runner_id)
                await asyncio.sleep(0.2)
                eta = coordinator.eta_feed.latest(errand.id)
                if eta is not None:
                    print(f"  {outcome.status.value}: {eta.distance_label} to dropoff, ETA {eta.eta_label}")

            await coordinator.mark_delivered(errand.id, runner_id)
            outcome = await coordinator.complete(errand.id, errand.requester_id)
            writer.writerow([
                errand.id,
                errand.transaction_code,
                runner_id,
                outcome.status.value,
                round(eta.distance_km, 2) if eta is not None else "N/A",
                eta.eta_label if eta is not None else "N/A",
            ])
            print(f"[SUCCESS] Errand {errand.id[:8]} -> {outcome.status.value}")

    await coordinator.shutdown()

    unread = 0
    for user_id in [f"buyer_{i}" for i in range(1, errand_count + 1)] + list(runners):
        unread += await notifications.unread_count(user_id)

    print("\n=== SIMULATION COMPLETE ===")
    print(f"Errands completed: {errand_count}")
    print(f"Notifications written: {unread}")
    print(f"Results written to '{output_path}'.")

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_simulation())
