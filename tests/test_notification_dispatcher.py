import asyncio

import pytest
import requests

from conftest import REQUESTER_ID, RUNNER_ID, RecordingPushSender
from errands.exceptions import NotFoundError, NotificationDeliveryError
from errands.models import ErrandStatus
from notifications.dispatcher import DeliveryState, DeliveryTask, NotificationDispatcher
from notifications.models import Notification, NotificationType, TransitionEvent
from notifications.push_client import ExpoPushSender
from notifications.templates import render


def event_for(errand, to_status, initiator_id, from_status=None):
    return TransitionEvent(
        errand_id=errand.id,
        from_status=from_status,
        to_status=to_status,
        initiator_id=initiator_id,
    )


def test_accept_notifies_requester(dispatcher, repository, notification_store, push_sender, make_errand):
    errand = make_errand(status=ErrandStatus.ACCEPTED, runner_id=RUNNER_ID)

    async def scenario():
        await repository.create(errand)
        receipt = await dispatcher.on_transition(
            event_for(errand, ErrandStatus.ACCEPTED, RUNNER_ID, ErrandStatus.PENDING)
        )
        return receipt, await notification_store.list(REQUESTER_ID)

    receipt, inbox = asyncio.run(scenario())

    assert receipt.notified
    assert receipt.recipient_id == REQUESTER_ID
    assert receipt.task.state == DeliveryState.DELIVERED
    assert [n.title for n in inbox] == ["Errand Accepted"]
    assert inbox[0].type == NotificationType.ERRAND_ACCEPTED
    assert inbox[0].data == {
        "errand_id": errand.id,
        "status": "accepted",
        "from_status": "pending",
        "sender_id": RUNNER_ID,
    }
    assert push_sender.sent == inbox


def test_requester_action_notifies_runner(dispatcher, notification_store, make_errand):
    errand = make_errand(status=ErrandStatus.COMPLETED, runner_id=RUNNER_ID)

    async def scenario():
        await dispatcher.on_transition(event_for(errand, ErrandStatus.COMPLETED, REQUESTER_ID), errand)
        return await notification_store.list(RUNNER_ID), await notification_store.list(REQUESTER_ID)

    runner_inbox, requester_inbox = asyncio.run(scenario())
    assert [n.title for n in runner_inbox] == ["Errand Confirmed"]
    assert requester_inbox == []


def test_cancel_before_claim_notifies_nobody(dispatcher, notification_store, push_sender, make_errand):
    errand = make_errand(status=ErrandStatus.CANCELLED)

    async def scenario():
        receipt = await dispatcher.on_transition(event_for(errand, ErrandStatus.CANCELLED, REQUESTER_ID), errand)
        return receipt, await notification_store.list(REQUESTER_ID)

    receipt, inbox = asyncio.run(scenario())
    assert not receipt.notified
    assert receipt.recipient_id is None
    assert inbox == []
    assert push_sender.sent == []


def test_unknown_errand(dispatcher, make_errand):
    errand = make_errand()

    with pytest.raises(NotFoundError):
        asyncio.run(dispatcher.on_transition(event_for(errand, ErrandStatus.ACCEPTED, RUNNER_ID)))


def test_push_failure_keeps_the_notification(repository, notification_store, make_errand):
    sender = RecordingPushSender(error=NotificationDeliveryError("gateway down"))
    dispatcher = NotificationDispatcher(notification_store, repository, sender)
    errand = make_errand(status=ErrandStatus.PICKED_UP, runner_id=RUNNER_ID)

    async def scenario():
        receipt = await dispatcher.on_transition(event_for(errand, ErrandStatus.PICKED_UP, RUNNER_ID), errand)
        return receipt, await notification_store.list(REQUESTER_ID)

    receipt, inbox = asyncio.run(scenario())
    assert receipt.task.state == DeliveryState.FAILED
    assert "gateway down" in receipt.task.error
    assert [n.title for n in inbox] == ["Errand Picked Up"]


def test_without_push_sender_delivery_is_skipped(repository, notification_store, make_errand):
    dispatcher = NotificationDispatcher(notification_store, repository)
    errand = make_errand(status=ErrandStatus.ON_THE_WAY, runner_id=RUNNER_ID)

    receipt = asyncio.run(dispatcher.on_transition(event_for(errand, ErrandStatus.ON_THE_WAY, RUNNER_ID), errand))
    assert receipt.task.state == DeliveryState.SKIPPED


def test_same_event_twice_is_not_deduplicated(dispatcher, notification_store, make_errand):
    errand = make_errand(status=ErrandStatus.DELIVERED, runner_id=RUNNER_ID)
    event = event_for(errand, ErrandStatus.DELIVERED, RUNNER_ID)

    async def scenario():
        await dispatcher.on_transition(event, errand)
        await dispatcher.on_transition(event, errand)
        return await notification_store.list(REQUESTER_ID)

    inbox = asyncio.run(scenario())
    assert [n.title for n in inbox] == ["Errand Completed", "Errand Completed"]
    assert len({n.id for n in inbox}) == 2


def test_delivery_is_attempted_once():
    task = DeliveryTask(Notification(REQUESTER_ID, "t", "b", NotificationType.SYSTEM))
    sender = RecordingPushSender()

    async def scenario():
        await task.run(sender)
        await task.run(sender)

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert len(sender.sent) == 1


def test_templates_cover_every_status(make_errand):
    errand = make_errand()
    titles = {status: render(errand, status).title for status in ErrandStatus}

    assert titles[ErrandStatus.DELIVERED] == "Errand Completed"
    assert titles[ErrandStatus.CANCELLED] == "Errand Cancelled"
    assert render(errand, ErrandStatus.ACCEPTED).body == "Your grocery errand has been accepted by a runner."


def test_untyped_errand_wording(make_errand):
    errand = make_errand().evolve(errand_type="")

    assert render(errand, ErrandStatus.ACCEPTED).body == "Your errand has been accepted by a runner."
    assert render(errand, ErrandStatus.CANCELLED).body == "The errand has been cancelled."


def test_store_operations(notification_store):
    async def scenario():
        first = await notification_store.append(Notification(REQUESTER_ID, "a", "a", NotificationType.SYSTEM))
        second = await notification_store.append(Notification(REQUESTER_ID, "b", "b", NotificationType.SYSTEM))
        await notification_store.append(Notification(RUNNER_ID, "c", "c", NotificationType.SYSTEM))

        assert await notification_store.unread_count(REQUESTER_ID) == 2
        read = await notification_store.mark_read(first.id)
        assert read.read
        assert await notification_store.unread_count(REQUESTER_ID) == 1
        assert await notification_store.mark_all_read(REQUESTER_ID) == 1
        assert await notification_store.unread_count(REQUESTER_ID) == 0

        await notification_store.delete(second.id)
        remaining = await notification_store.list(REQUESTER_ID)
        assert [n.id for n in remaining] == [first.id]

        with pytest.raises(NotFoundError):
            await notification_store.delete(second.id)
        with pytest.raises(NotFoundError):
            await notification_store.mark_read("missing")

        # untouched
        assert await notification_store.unread_count(RUNNER_ID) == 1

    asyncio.run(scenario())


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {"data": {"status": "ok", "id": "ticket_1"}}

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


def tokens(mapping):
    async def lookup(user_id):
        return mapping.get(user_id)
    return lookup


@pytest.fixture
def notification():
    return Notification(
        REQUESTER_ID,
        "Errand Accepted",
        "Your grocery errand has been accepted by a runner.",
        NotificationType.ERRAND_ACCEPTED,
        data={"errand_id": "errand_1"},
    )


def test_expo_sender_posts_payload(monkeypatch, notification):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    sender = ExpoPushSender(tokens({REQUESTER_ID: "ExponentPushToken[abc]"}), base_url="http://push.test/send")

    assert asyncio.run(sender.send(notification)) is True
    url, payload, timeout = calls[0]
    assert url == "http://push.test/send"
    assert timeout == 5
    assert payload["to"] == "ExponentPushToken[abc]"
    assert payload["title"] == "Errand Accepted"
    assert payload["data"] == {"errand_id": "errand_1", "notificationId": notification.id}


def test_expo_sender_without_token(monkeypatch, notification):
    def fail_post(*args, **kwargs):
        raise AssertionError("must not post without a token")

    monkeypatch.setattr(requests, "post", fail_post)
    sender = ExpoPushSender(tokens({}), base_url="http://push.test/send")

    assert asyncio.run(sender.send(notification)) is False


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status_code=500),
        FakeResponse(body=ValueError("no json")),
        FakeResponse(body={"data": {"status": "error", "message": "DeviceNotRegistered"}}),
    ],
)
def test_expo_sender_failures(monkeypatch, notification, response):
    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: response)
    sender = ExpoPushSender(tokens({REQUESTER_ID: "tok"}), base_url="http://push.test/send")

    with pytest.raises(NotificationDeliveryError):
        asyncio.run(sender.send(notification))


def test_expo_sender_unreachable(monkeypatch, notification):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", refuse)
    sender = ExpoPushSender(tokens({REQUESTER_ID: "tok"}), base_url="http://push.test/send")

    with pytest.raises(NotificationDeliveryError):
        asyncio.run(sender.send(notification))
