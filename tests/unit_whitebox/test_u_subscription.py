import asyncio
import logging
import threading
from unittest.mock import MagicMock

import pytest

from services.subscription import Subscription


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_delivers_on_event_loop():
    received = []
    subscription = Subscription("users/u1", received.append)
    subscription.attach(MagicMock())

    subscription.deliver("first")
    subscription.deliver("second")
    await settle()

    assert received == ["first", "second"]


@pytest.mark.asyncio
async def test_delivery_from_worker_thread():
    received = []
    subscription = Subscription("users/u1", received.append)

    worker = threading.Thread(target=subscription.deliver, args=("from-thread",))
    worker.start()
    worker.join()
    await settle()

    assert received == ["from-thread"]


@pytest.mark.asyncio
async def test_no_delivery_after_cancel():
    received = []
    watch = MagicMock()
    subscription = Subscription("users/u1", received.append)
    subscription.attach(watch)

    subscription.deliver("queued-before-cancel")
    subscription.cancel()
    subscription.deliver("after-cancel")
    await settle()

    assert received == []
    watch.unsubscribe.assert_called_once()
    assert subscription.cancelled


@pytest.mark.asyncio
async def test_cancel_is_idempotent():
    watch = MagicMock()
    subscription = Subscription("users/u1", lambda value: None)
    subscription.attach(watch)

    subscription.cancel()
    subscription.cancel()

    watch.unsubscribe.assert_called_once()


@pytest.mark.asyncio
async def test_attach_after_cancel_closes_watch_immediately():
    watch = MagicMock()
    subscription = Subscription("users/u1", lambda value: None)
    subscription.cancel()

    subscription.attach(watch)

    watch.unsubscribe.assert_called_once()


@pytest.mark.asyncio
async def test_callback_errors_are_logged_not_raised(caplog):
    def explode(value):
        raise RuntimeError("consumer bug")

    received = []
    subscription = Subscription("chats/c1", explode)
    with caplog.at_level(logging.ERROR, logger="services.subscription"):
        subscription.deliver("boom")
        await settle()
    assert "Subscriber callback for chats/c1 raised" in caplog.text

    # The stream keeps working for later values
    subscription._callback = received.append
    subscription.deliver("next")
    await settle()
    assert received == ["next"]


@pytest.mark.asyncio
async def test_context_manager_cancels():
    watch = MagicMock()
    with Subscription("users/u1", lambda value: None) as subscription:
        subscription.attach(watch)
    watch.unsubscribe.assert_called_once()
