import asyncio

from observerflow.services.event_channel import EventChannel


async def _drain(channel, key):
    return [event async for event in channel.stream(key)]


def test_late_subscriber_sees_full_history():
    async def scenario():
        channel = EventChannel()
        await channel.publish("run-1", {"status": "Submitted"})
        await channel.publish("run-1", {"status": "Completed"})
        await channel.close("run-1")
        return await _drain(channel, "run-1")

    assert asyncio.run(scenario()) == [{"status": "Submitted"}, {"status": "Completed"}]


def test_live_subscriber_receives_events_until_close():
    async def scenario():
        channel = EventChannel()
        reader = asyncio.create_task(_drain(channel, "run-1"))
        await asyncio.sleep(0)
        await channel.publish("run-1", {"status": "Running"})
        await channel.close("run-1")
        return await reader

    assert asyncio.run(scenario()) == [{"status": "Running"}]


def test_slow_subscriber_is_dropped():
    async def scenario():
        channel = EventChannel(max_queue_size=2)
        queue = await channel.subscribe("run-1")
        for sequence in range(4):
            await channel.publish("run-1", {"sequence": sequence})
        received = []
        while True:
            item = await queue.get()
            if item is None:
                break
            received.append(item["sequence"])
        return channel, received

    channel, received = asyncio.run(scenario())
    assert received == [0, 1]
    assert len(channel.history("run-1")) == 4


def test_events_after_close_are_dropped():
    async def scenario():
        channel = EventChannel()
        await channel.publish("run-1", {"status": "Failed"})
        await channel.close("run-1")
        await channel.publish("run-1", {"status": "Running"})
        return channel

    channel = asyncio.run(scenario())
    assert channel.is_closed("run-1")
    assert channel.history("run-1") == [{"status": "Failed"}]


def test_discard_forgets_history_and_releases_subscribers():
    async def scenario():
        channel = EventChannel()
        await channel.publish("run-1", {"status": "Running"})
        queue = await channel.subscribe("run-1")
        await channel.discard("run-1")
        return channel, [queue.get_nowait(), queue.get_nowait()]

    channel, received = asyncio.run(scenario())
    assert received == [{"status": "Running"}, None]
    assert channel.history("run-1") == []
    assert not channel.is_closed("run-1")
