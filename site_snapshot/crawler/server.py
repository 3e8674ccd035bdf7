"""
Boot-function server management.

A boot function starts an HTTP server in-process on the port it is given::

    async def boot(*, port: int):
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, "127.0.0.1", port).start()
        return runner.cleanup        # optional teardown

Readiness is detected from the outside by TCP probing, so the boot function
may either return once the server listens or keep running forever.
"""
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import socket
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from site_snapshot.errors import ServerBootError

__all__ = ("Server", "BootFunction")

BootFunction = Callable[..., Awaitable[Any]]


class Server:
    """Runs a boot function on an OS-allocated port and tears it down again."""

    def __init__(self, handler: BootFunction, *, host: str = "127.0.0.1") -> None:
        if not callable(handler):
            raise TypeError("Server handler must be callable")
        self._handler = handler
        self.host = host
        self._port: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._booted = False
        self._booting = False
        self.logger = logging.getLogger("SiteSnapshot")

    # ------------------------------------------------------------------ #
    # Ports                                                              #
    # ------------------------------------------------------------------ #

    def find_free_port(self) -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((self.host, 0))
            return sock.getsockname()[1]

    async def is_port_ready(self, port: int, timeout: float = 0.2) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(self.host, port), timeout)
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    async def wait_for_tcp_ready(
        self,
        port: int,
        *,
        timeout: float = 5.0,
        interval: float = 0.05,
        probe_timeout: float = 0.2,
    ) -> None:
        deadline = time.monotonic() + timeout
        while True:
            self._raise_if_crashed()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if await self.is_port_ready(port, min(probe_timeout, remaining)):
                return
            await asyncio.sleep(min(interval, max(0.0, deadline - time.monotonic())))
        self._raise_if_crashed()
        raise ServerBootError(f"Server boot timeout after {timeout}s - no response on port {port}")

    def _raise_if_crashed(self) -> None:
        task = self._task
        if task is None or not task.done() or task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            raise ServerBootError(f"Server crashed during boot: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    async def _invoke(self, port: int) -> Any:
        result = self._handler(port=port)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def boot(self, *, timeout: float = 30.0, max_attempts: int = 3) -> str:
        """Start the server and return its origin once it accepts connections."""
        if self._booted:
            raise ServerBootError("Server is already booted")
        if self._booting:
            raise ServerBootError("Server is already booting")

        self._booting = True
        last_error: Optional[BaseException] = None
        try:
            for attempt in range(1, max_attempts + 1):
                self._port = self.find_free_port()
                self._task = asyncio.create_task(self._invoke(self._port))
                try:
                    await self.wait_for_tcp_ready(
                        self._port, timeout=timeout, probe_timeout=0.02 if timeout < 1 else 0.2
                    )
                except ServerBootError as exc:
                    last_error = exc
                    self.logger.debug("Boot attempt %d/%d failed: %s", attempt, max_attempts, exc)
                    await self._cancel_task()
                    self._port = None
                    await asyncio.sleep(0.1 * attempt)
                    continue
                self._booted = True
                self.logger.info("Server booted at %s", self.origin)
                return self.origin  # type: ignore[return-value]
        finally:
            self._booting = False
        raise ServerBootError(f"Failed to boot server after {max_attempts} attempts: {last_error}")

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task

    async def kill(self) -> None:
        """Run the boot function's teardown (if any) and forget the port."""
        task = self._task
        try:
            if task is not None and task.done() and not task.cancelled() and task.exception() is None:
                teardown = task.result()
                if callable(teardown):
                    outcome = teardown()
                    if inspect.isawaitable(outcome):
                        await outcome
                self._task = None
            else:
                await self._cancel_task()
        finally:
            if self._booted:
                self.logger.info("Server at %s stopped", self.origin)
            self._booted = False
            self._port = None

    async def is_alive(self) -> bool:
        if not self._booted or self._port is None:
            return False
        return await self.is_port_ready(self._port)

    # ------------------------------------------------------------------ #
    # Introspection                                                      #
    # ------------------------------------------------------------------ #

    def is_booted(self) -> bool:
        return self._booted

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def origin(self) -> Optional[str]:
        return f"http://{self.host}:{self._port}" if self._port is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {"isBooted": self._booted, "port": self._port, "origin": self.origin}
