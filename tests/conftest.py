import pytest

from errands.models import Coordinates, Errand, ErrandStatus, Place
from errands.repository import InMemoryErrandRepository
from lifecycle.coordinator import ErrandLifecycleCoordinator
from lifecycle.policy import LifecyclePolicy
from notifications.dispatcher import NotificationDispatcher
from notifications.store import InMemoryNotificationStore
from tracking.location_store import InMemoryLocationStore


REQUESTER_ID = "buyer_1"
RUNNER_ID = "runner_1"
OTHER_RUNNER_ID = "runner_2"


class ScriptedPositionSource:
    """
    Returns queued positions per actor, repeating the last one.
    """

    def __init__(self, positions=None):
        self.positions = {actor: list(coords) for actor, coords in (positions or {}).items()}
        self.calls = 0

    async def current_position(self, actor_id):
        self.calls += 1
        queue = self.positions.get(actor_id)
        if not queue:
            raise RuntimeError(f"GPS unavailable for {actor_id}")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]


class RecordingPushSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    async def send(self, notification):
        if self.error is not None:
            raise self.error
        self.sent.append(notification)
        return True


@pytest.fixture
def pickup():
    # Lagos mainland
    return Place.of("12 Herbert Macaulay Way, Yaba", 6.5244, 3.3792)


@pytest.fixture
def dropoff():
    return Place.of("3 Akin Adesola St, Victoria Island", 6.4500, 3.4000)


@pytest.fixture
def repository():
    return InMemoryErrandRepository()


@pytest.fixture
def notification_store():
    return InMemoryNotificationStore()


@pytest.fixture
def location_store():
    return InMemoryLocationStore()


@pytest.fixture
def push_sender():
    return RecordingPushSender()


@pytest.fixture
def dispatcher(notification_store, repository, push_sender):
    return NotificationDispatcher(notification_store, repository, push_sender)


@pytest.fixture
def policy():
    # slow cadence so background jobs stay quiet during a test
    return LifecyclePolicy(active_interval_ms=60_000, status_refresh_interval_ms=60_000)


@pytest.fixture
def coordinator(repository, dispatcher, location_store, policy):
    return ErrandLifecycleCoordinator(
        repository,
        dispatcher,
        location_store=location_store,
        policy=policy,
    )


@pytest.fixture
def make_errand(pickup, dropoff):
    def _make(status=ErrandStatus.PENDING, runner_id=None, code="AB12CD", requester_id=REQUESTER_ID):
        errand = Errand.new(requester_id, pickup, dropoff, code, errand_type="grocery")
        return errand.evolve(status=status, runner_id=runner_id)

    return _make


def coords(lat, lon):
    return Coordinates.of(lat, lon)
