import asyncio

from store.core.tasks import DetachedTaskRunner


async def test_failure_stays_in_background():
    runner = DetachedTaskRunner()
    done = []

    async def boom():
        raise RuntimeError("smtp down")

    async def ok():
        done.append(True)

    runner.submit(boom(), name="boom")
    runner.submit(ok(), name="ok")
    await runner.drain()

    assert done == [True]
    assert runner.pending == 0


async def test_drain_abandons_slow_tasks():
    runner = DetachedTaskRunner()

    async def slow():
        await asyncio.sleep(10)

    task = runner.submit(slow(), name="slow")
    await runner.drain(timeout=0.01)
    await asyncio.sleep(0)

    assert task.cancelled() or task.done()


async def test_drain_with_nothing_pending():
    await DetachedTaskRunner().drain()
