import asyncio
import logging

import pytest

from agent_interview.value_updater import CancellationToken, ValueUpdater


def _delayed_upper(delays):
    calls = []

    async def transform(value, token):
        calls.append(value)
        await asyncio.sleep(delays.get(value, 0))
        return value.upper()

    return transform, calls


def test_newer_value_supersedes_in_flight_transform():
    async def scenario():
        transform, calls = _delayed_upper({"a": 0.05, "b": 0.01})
        updater = ValueUpdater(transform)
        changes = []
        updater.events.subscribe("change", changes.append)

        updater.set("a")
        updater.set("b")
        latest = await updater.wait_for_load()
        # Let the superseded transform settle too.
        await asyncio.sleep(0.08)
        return latest, changes, calls

    latest, changes, calls = asyncio.run(scenario())

    assert latest == "B"
    assert calls == ["a", "b"]
    live = [change for change in changes if not change.token.cancelled]
    stale = [change for change in changes if change.token.cancelled]
    assert [change.result for change in live] == ["B"]
    assert [change.result for change in stale] == ["A"]


def test_setting_the_same_value_twice_runs_one_transform():
    async def scenario():
        transform, calls = _delayed_upper({})
        updater = ValueUpdater(transform)
        accepted = [updater.set("x"), updater.set("x")]
        await updater.wait_for_load()
        return accepted, calls, updater.invocations

    accepted, calls, invocations = asyncio.run(scenario())

    assert accepted == [True, False]
    assert calls == ["x"]
    assert invocations == 1


def test_set_result_seeds_without_transform():
    async def scenario():
        transform, calls = _delayed_upper({})
        updater = ValueUpdater(transform)
        updater.set_result("https://cdn.example/avatar.png")
        return await updater.wait_for_load(), calls

    result, calls = asyncio.run(scenario())

    assert result == "https://cdn.example/avatar.png"
    assert calls == []


def test_set_result_abandons_in_flight_transform():
    async def scenario():
        tokens = []

        async def transform(value, token):
            tokens.append(token)
            await asyncio.sleep(0.02)
            return value

        updater = ValueUpdater(transform)
        updater.set("draft")
        await asyncio.sleep(0)
        updater.set_result("kept")
        result = await updater.wait_for_load()
        await asyncio.sleep(0.04)
        return result, tokens

    result, tokens = asyncio.run(scenario())

    assert result == "kept"
    assert tokens[0].cancelled


def test_wait_for_load_without_input_returns_none():
    async def transform(value, token):
        return value

    updater_result = asyncio.run(ValueUpdater(transform).wait_for_load())

    assert updater_result is None


def test_failed_transform_is_logged_and_raised_on_wait(caplog):
    async def scenario():
        async def transform(value, token):
            raise RuntimeError("renderer down")

        updater = ValueUpdater(transform, label="avatar")
        changes = []
        updater.events.subscribe("change", changes.append)
        updater.set("anything")
        with pytest.raises(RuntimeError, match="renderer down"):
            await updater.wait_for_load()
        await asyncio.sleep(0)
        return changes

    with caplog.at_level(logging.WARNING, logger="agent_interview.value_updater"):
        changes = asyncio.run(scenario())

    assert changes == []
    assert "Avatar transform failed: renderer down" in caplog.text


def test_cancellation_token_raises_once_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()

    assert token.cancelled
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


def test_seeded_input_is_not_transformed_again():
    async def scenario():
        transform, calls = _delayed_upper({})
        updater = ValueUpdater(transform)
        updater.set_result("stored.png", value="red coat")
        accepted = [updater.set("red coat"), updater.set("blue coat")]
        return accepted, calls, await updater.wait_for_load()

    accepted, calls, result = asyncio.run(scenario())

    assert accepted == [False, True]
    assert calls == ["blue coat"]
    assert result == "BLUE COAT"
