import asyncio

import pytest

from agent_interview.turn_queue import TurnQueue


def test_operations_run_in_submission_order():
    async def scenario():
        queue = TurnQueue()
        log = []

        def make(label, delay):
            async def operation():
                log.append(f"start {label}")
                await asyncio.sleep(delay)
                log.append(f"end {label}")
                return label

            return operation

        first = queue.submit(make("a", 0.03))
        second = queue.submit(make("b", 0.0))
        third = queue.submit(make("c", 0.01))
        results = await asyncio.gather(first, second, third)
        return log, results

    log, results = asyncio.run(scenario())

    assert results == ["a", "b", "c"]
    assert log == ["start a", "end a", "start b", "end b", "start c", "end c"]


def test_failure_does_not_block_later_operations():
    async def scenario():
        queue = TurnQueue()

        async def boom():
            raise ValueError("first failed")

        async def ok():
            return "second"

        failing = queue.submit(boom)
        succeeding = queue.submit(ok)
        with pytest.raises(ValueError, match="first failed"):
            await failing
        return await succeeding, queue.pending

    result, pending = asyncio.run(scenario())

    assert result == "second"
    assert pending == 0


def test_pending_counts_unsettled_operations():
    async def scenario():
        queue = TurnQueue()
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        queue.submit(blocked)
        last = queue.submit(blocked)
        counted = queue.pending
        gate.set()
        await last
        return counted, queue.pending

    counted, remaining = asyncio.run(scenario())

    assert counted == 2
    assert remaining == 0


def test_run_returns_operation_result():
    async def scenario():
        queue = TurnQueue()

        async def answer():
            return 42

        return await queue.run(answer)

    assert asyncio.run(scenario()) == 42
