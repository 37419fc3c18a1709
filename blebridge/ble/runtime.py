"""Background execution context for all asynchronous BLE work."""

import asyncio
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import Event, RLock, Thread, current_thread
from typing import Any, Coroutine, Optional, Set

from blebridge.ble.constants import (
    BLEConfig,
    ERROR_RUNTIME_UNAVAILABLE,
    ERROR_TIMEOUT,
    logger,
)
from blebridge.ble.errors import BLEErrorHandler, RuntimeInitError

__all__ = ["RuntimeManager"]


class RuntimeManager:
    """
    Owns the asyncio event loop that runs every transport call.

    The loop lives in a dedicated daemon thread and is created lazily by
    `ensure_started()`. Host code never awaits anything: it schedules
    coroutines with `spawn()` and receives results through the event bridge.
    `shutdown()` cancels in-flight work and stops the loop; records already
    pushed to the bridge stay there for the host to deliver. The runtime can
    be started again afterwards.
    """

    def __init__(self, *, thread_name: str = "BLERuntime") -> None:
        self._lock = RLock()
        self._thread_name = thread_name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[Thread] = None
        self._futures: Set[Future] = set()

    @property
    def is_running(self) -> bool:
        """True while the background loop thread is alive."""
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        """The running loop, or None before start / after shutdown."""
        with self._lock:
            return self._loop

    def in_runtime_thread(self) -> bool:
        """True when called from the runtime's own loop thread."""
        with self._lock:
            return self._thread is not None and self._thread is current_thread()

    def ensure_started(self) -> asyncio.AbstractEventLoop:
        """
        Create the background event loop and its thread if they do not exist yet.

        Idempotent: repeated calls return the same loop while it is running.

        Returns:
            asyncio.AbstractEventLoop: The loop owned by this runtime.

        Raises:
            RuntimeInitError: If the platform cannot provide a loop or a thread.
        """
        with self._lock:
            if self._loop is not None and self._thread is not None and self._thread.is_alive():
                return self._loop

            try:
                loop = asyncio.new_event_loop()
            except (OSError, RuntimeError) as exc:
                raise RuntimeInitError(ERROR_RUNTIME_UNAVAILABLE.format(exc)) from exc

            started = Event()
            thread = Thread(
                target=self._run_event_loop,
                args=(loop, started),
                name=self._thread_name,
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                loop.close()
                raise RuntimeInitError(ERROR_RUNTIME_UNAVAILABLE.format(exc)) from exc

            if not started.wait(timeout=BLEConfig.RUNTIME_THREAD_JOIN_TIMEOUT):
                logger.warning("BLE runtime thread slow to start")
            self._loop = loop
            self._thread = thread
            logger.debug("BLE runtime started")
            return loop

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Future:
        """
        Schedule a coroutine on the runtime loop, starting the runtime if needed.

        Unhandled exceptions from the coroutine are logged; callers report
        outcomes through the event bridge rather than through the future.

        Returns:
            concurrent.futures.Future: Handle that can be used to cancel the task.
        """
        with self._lock:
            try:
                loop = self.ensure_started()
            except RuntimeInitError:
                coro.close()
                raise
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            self._futures.add(future)
        future.add_done_callback(self._on_future_done)
        return future

    def call_soon(self, callback, *args) -> None:
        """Run a plain callable on the runtime loop thread."""
        loop = self.ensure_started()
        loop.call_soon_threadsafe(callback, *args)

    def async_await(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None):
        """
        Block until a coroutine scheduled on the runtime loop finishes and return its result.

        Only intended for teardown and tooling; host-facing operations never block.

        Raises:
            RuntimeInitError: When called from the runtime thread itself.
            TimeoutError: If the coroutine does not finish within `timeout` seconds.
        """
        if self.in_runtime_thread():
            coro.close()
            raise RuntimeInitError("async_await() cannot be called from the BLE runtime thread")
        future = self.spawn(coro)
        try:
            return future.result(timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TimeoutError(ERROR_TIMEOUT.format("BLE runtime call", timeout or 0.0)) from exc

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Cancel all in-flight tasks and release the loop thread.

        Safe to call multiple times and before the runtime was ever started.
        """
        if timeout is None:
            timeout = BLEConfig.SHUTDOWN_TIMEOUT
        with self._lock:
            loop, thread = self._loop, self._thread
            futures = list(self._futures)
            self._loop = None
            self._thread = None
            self._futures.clear()

        if loop is not None and thread is not None:
            for future in futures:
                future.cancel()
            if thread is current_thread():
                BLEErrorHandler.safe_cleanup(loop.stop, "runtime loop stop")
            elif thread.is_alive():
                self._stop_loop(loop, timeout)
                thread.join(timeout=BLEConfig.RUNTIME_THREAD_JOIN_TIMEOUT)
                if thread.is_alive():
                    logger.warning(
                        "BLE runtime thread did not exit within %.1fs",
                        BLEConfig.RUNTIME_THREAD_JOIN_TIMEOUT,
                    )
            logger.debug("BLE runtime stopped")

    def __enter__(self) -> "RuntimeManager":
        self.ensure_started()
        return self

    def __exit__(self, _type, _value, _traceback) -> None:
        self.shutdown()

    def _stop_loop(self, loop: asyncio.AbstractEventLoop, timeout: float) -> None:
        try:
            cancel_future = asyncio.run_coroutine_threadsafe(
                self._cancel_pending_tasks(), loop
            )
        except RuntimeError:
            # Loop already closed
            return
        try:
            cancel_future.result(timeout)
        except FutureTimeoutError:
            logger.warning("Timed out cancelling BLE tasks during shutdown")
        except Exception as e:  # noqa: BLE001 - teardown must complete
            logger.debug("Error cancelling BLE tasks during shutdown: %s", e)
        BLEErrorHandler.safe_cleanup(
            lambda: loop.call_soon_threadsafe(loop.stop), "runtime loop stop"
        )

    def _on_future_done(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Unhandled error in BLE task", exc_info=exc)

    @staticmethod
    def _run_event_loop(loop: asyncio.AbstractEventLoop, started: Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(started.set)
        BLEErrorHandler.safe_execute(
            loop.run_forever, error_msg="Error in BLE runtime loop", reraise=False
        )
        BLEErrorHandler.safe_cleanup(loop.close, "runtime loop close")

    @staticmethod
    async def _cancel_pending_tasks() -> None:
        current = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks() if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
