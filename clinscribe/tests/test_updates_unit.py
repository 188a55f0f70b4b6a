import asyncio

from clinscribe.internal_core.updates import UpdateChannel


def test_update_channel_fans_out_in_publish_order() -> None:
    async def scenario() -> tuple[list[int], list[int]]:
        channel: UpdateChannel[int] = UpdateChannel()
        first = channel.subscribe()
        second = channel.subscribe()
        for value in (1, 2, 3):
            channel.publish(value)
        channel.close()
        return [item async for item in first], [item async for item in second]

    first, second = asyncio.run(scenario())
    assert first == [1, 2, 3]
    assert second == [1, 2, 3]


def test_update_channel_replays_last_item_to_late_subscriber() -> None:
    async def scenario() -> list[str]:
        channel: UpdateChannel[str] = UpdateChannel()
        channel.publish("starting")
        channel.publish("running")
        late = channel.subscribe()
        channel.close()
        return [item async for item in late]

    assert asyncio.run(scenario()) == ["running"]


def test_update_channel_drops_oldest_for_slow_subscriber() -> None:
    async def scenario() -> list[int]:
        channel: UpdateChannel[int] = UpdateChannel(maxsize=3)
        slow = channel.subscribe()
        for value in range(10):
            channel.publish(value)
        return [slow.latest()]

    # Publishing never blocks; the newest value is still there.
    assert asyncio.run(scenario()) == [9]


def test_update_channel_unsubscribe_on_context_exit() -> None:
    async def scenario() -> tuple[int, int]:
        channel: UpdateChannel[int] = UpdateChannel()
        async with channel.subscribe():
            during = channel.subscriber_count
        return during, channel.subscriber_count

    assert asyncio.run(scenario()) == (1, 0)


def test_subscription_close_delivers_queued_items_first() -> None:
    async def scenario() -> list[int]:
        channel: UpdateChannel[int] = UpdateChannel()
        sub = channel.subscribe(maxsize=0)
        channel.publish(1)
        channel.publish(2)
        sub.close()
        channel.publish(3)
        return [item async for item in sub]

    assert asyncio.run(scenario()) == [1, 2]
