import asyncio

import anyio
import pytest

from portal.core.async_utils import run_async, spawn_detached, wait_for_detached


async def _sample() -> str:
    await anyio.sleep(0)
    return "ok"


@pytest.mark.asyncio
async def test_run_async_avoids_asyncio_run_in_worker_thread(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail_run(*_args: object, **_kwargs: object) -> None:
        pytest.fail("asyncio.run should not be used in request threads")

    monkeypatch.setattr(asyncio, "run", _fail_run)

    def _call() -> str:
        return run_async(_sample())

    result = await anyio.to_thread.run_sync(_call)
    assert result == "ok"


def test_run_async_without_event_loop() -> None:
    assert run_async(_sample()) == "ok"


@pytest.mark.asyncio
async def test_run_async_times_out_in_worker_thread() -> None:
    async def _slow() -> None:
        await anyio.sleep(1)

    def _call() -> None:
        run_async(_slow(), timeout=0.01)

    with pytest.raises(TimeoutError):
        await anyio.to_thread.run_sync(_call)


@pytest.mark.asyncio
async def test_run_async_rejects_same_thread_async_context() -> None:
    coro = _sample()
    with pytest.raises(RuntimeError, match="use await instead"):
        run_async(coro)
    coro.close()


@pytest.mark.asyncio
async def test_spawn_detached_runs_without_awaiting() -> None:
    done: list[str] = []

    async def _work() -> None:
        await asyncio.sleep(0)
        done.append("written")

    spawn_detached(_work(), name="test-write")
    assert done == []

    await wait_for_detached()
    assert done == ["written"]


@pytest.mark.asyncio
async def test_spawn_detached_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    async def _boom() -> None:
        raise ValueError("write failed")

    task = spawn_detached(_boom(), name="failing-write")
    await wait_for_detached()
    # Let the done callback run
    await asyncio.sleep(0)

    assert task.done()
    assert "Detached task failing-write failed: ValueError" in caplog.text
