"""
External helper process bridge.

Talks newline-delimited JSON over the stdio of a child process. Requests are
``{"jsonrpc": "2.0", "id": N, "method": ..., "params": [...]}``; replies are
``{"id": N, "result": ...}`` or ``{"id": N, "error": {"message": ...}}``.
Lines with a ``status`` key are status messages and never match a call.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional

from deskprobe.core.adapters.base import CoordinateBackend, InitResult
from deskprobe.core.config import BridgeConfig
from deskprobe.core.errors import BackendUnavailableError, BridgeError, BridgeTimeoutError

logger = logging.getLogger("deskprobe.bridge")


@dataclass
class PendingCall:
    method: str
    future: asyncio.Future
    deadline: float
    timeout_s: float


class ProcessBridge(CoordinateBackend):
    """Coordinate backend served by a helper process."""

    name = "bridge"

    def __init__(self, config: Optional[BridgeConfig] = None) -> None:
        self.config = config or BridgeConfig()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._available = False
        self._next_id = 0
        self._pending: dict[int, PendingCall] = {}
        self._ready: Optional[asyncio.Event] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._sweeper_task: Optional[asyncio.Task] = None

    async def initialize(self) -> InitResult:
        if self._available:
            return InitResult(ok=True)

        env = {**os.environ, "PYTHONUNBUFFERED": "1"}
        self._ready = asyncio.Event()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.config.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=env,
                limit=self.config.max_line_bytes,
            )
        except OSError as exc:
            logger.warning(f"[Bridge] Could not start {' '.join(self.config.command)}: {exc}")
            return InitResult(ok=False, error=f"Bridge process failed to start: {exc}")

        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.config.startup_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("[Bridge] Startup timeout waiting for ready signal")
            await self._terminate()
            return InitResult(ok=False, error="Bridge startup timeout")

        if self._reader_task.done():
            await self._terminate()
            return InitResult(ok=False, error="Bridge process exited during startup")

        self._available = True
        self._sweeper_task = asyncio.create_task(self._sweep())
        logger.info("[Bridge] Helper process ready")
        return InitResult(ok=True)

    async def cleanup(self) -> None:
        if self.is_available():
            try:
                await self.call("shutdown", timeout_s=2.0)
            except BridgeError as exc:
                logger.debug(f"[Bridge] Shutdown call failed: {exc}")
        await self._terminate()

    def is_available(self) -> bool:
        return self._available and self._process is not None and self._process.returncode is None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def call(self, method: str, params: Optional[list[Any]] = None, timeout_s: Optional[float] = None) -> Any:
        """
        Invoke a method on the helper process.

        Args:
            method: Remote method name
            params: Positional arguments
            timeout_s: Per-call timeout, defaults to the configured call timeout

        Returns:
            The ``result`` field of the matching reply
        """
        if not self.is_available():
            raise BackendUnavailableError("Bridge process not available")
        assert self._process is not None and self._process.stdin is not None

        self._next_id += 1
        call_id = self._next_id
        timeout = timeout_s if timeout_s is not None else self.config.call_timeout_s
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = PendingCall(
            method=method,
            future=future,
            deadline=time.monotonic() + timeout,
            timeout_s=timeout,
        )

        request = {"jsonrpc": "2.0", "id": call_id, "method": method, "params": params or []}
        try:
            self._process.stdin.write((json.dumps(request) + "\n").encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._pending.pop(call_id, None)
            self._available = False
            raise BridgeError(f"Bridge pipe closed: {exc}") from exc

        return await future

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stream = self._process.stdout
        reason = "Bridge process exited"
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                self._handle_line(line.decode("utf-8", errors="replace").strip())
        except ValueError as exc:
            reason = f"Bridge output line exceeded {self.config.max_line_bytes} bytes"
            logger.warning(f"[Bridge] {reason}: {exc}")
        finally:
            self._available = False
            if self._ready is not None:
                # Unblocks a startup wait; initialize() checks whether we exited.
                self._ready.set()
            self._fail_pending(BridgeError(reason))
        logger.info(f"[Bridge] Reader stopped: {reason}")

    def _handle_line(self, line: str) -> None:
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"[Bridge] Non-JSON output: {line[:200]}")
            return
        if not isinstance(message, dict):
            return

        if "status" in message:
            if message["status"] == "ready" and self._ready is not None:
                self._ready.set()
            return

        call_id = message.get("id")
        if not isinstance(call_id, int) or isinstance(call_id, bool):
            logger.debug(f"[Bridge] Reply with unusable id: {line[:200]}")
            return
        call = self._pending.pop(call_id, None)
        if call is None or call.future.done():
            return
        error = message.get("error")
        if error:
            text = error.get("message") if isinstance(error, dict) else str(error)
            call.future.set_exception(BridgeError(text or "Bridge error"))
        else:
            call.future.set_result(message.get("result"))

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            line = await stream.readline()
            if not line:
                return
            logger.debug(f"[Bridge stderr] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_s)
            now = time.monotonic()
            expired = [call_id for call_id, call in self._pending.items() if call.deadline <= now]
            for call_id in expired:
                call = self._pending.pop(call_id)
                if not call.future.done():
                    call.future.set_exception(BridgeTimeoutError(call.method, call.timeout_s))

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for call in pending.values():
            if not call.future.done():
                call.future.set_exception(error)

    async def _terminate(self) -> None:
        self._available = False
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        for task in (self._sweeper_task, self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        self._sweeper_task = self._reader_task = self._stderr_task = None
        self._fail_pending(BridgeError("Bridge closed"))

    # ------------------------------------------------------------------
    # Coordinate backend
    # ------------------------------------------------------------------

    async def click_at(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        if count == 2 and button == "left":
            await self.call("double_click", [x, y])
            return
        for _ in range(max(count, 1)):
            await self.call("click", [x, y, button])

    async def move_to(self, x: float, y: float) -> None:
        await self.call("move_mouse", [x, y])

    async def drag_between(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        await self.call("drag", [start[0], start[1], end[0], end[1]])

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        await self.call("type_text", [text])

    async def press_key(self, key: str, modifiers: tuple[str, ...] = ()) -> None:
        await self.call("press_key", [key, list(modifiers)])

    async def scroll(
        self,
        dx: int,
        dy: int,
        x: Optional[float] = None,
        y: Optional[float] = None,
    ) -> None:
        await self.call("scroll", [x, y, dx, dy])

    async def screenshot_base64(self) -> str:
        return await self.call("screenshot")

    async def get_screen_size(self) -> tuple[int, int]:
        size = await self.call("get_screen_size")
        return int(size["width"]), int(size["height"])

