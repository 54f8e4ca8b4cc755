from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

from .common import (
    DEFAULT_RESUME_DELAY_MS,
    Command,
    CommandFinished,
    EndpointAppeared,
    EndpointVanished,
    EngineSnapshot,
    PlaybackStatus,
    ResumeDue,
    SettingsChanged,
    StatusChanged,
    log,
    parse_status,
)
from .registry import EndpointRegistry

_STOP = object()


class ArbitrationEngine:
    """
    Keeps at most one player playing and resumes the last auto-paused one when
    the active player stops.

    Runs in an asyncio loop. Bus threads call the sink methods
    (``status_changed``, ``endpoint_appeared``, ``endpoint_vanished``), which
    are thread-safe and only enqueue. Every event, including command
    completions and resume-delay expiries, is applied by ``handle`` one at a
    time in arrival order.
    """

    def __init__(self, bus, resume_delay_ms: int = DEFAULT_RESUME_DELAY_MS, enabled: bool = True):
        self.bus = bus
        self.resume_delay_ms = max(0, int(resume_delay_ms))
        self.enabled = enabled
        self.registry = EndpointRegistry()

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.queue: asyncio.Queue = asyncio.Queue()

        self._tasks: Set[asyncio.Task] = set()
        self._in_flight = 0
        self._resuming: Optional[str] = None
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._stopping = False

    def _log(self, message: str) -> None:
        log(message)

    # ---- public, thread-safe entrypoints ----

    def submit(self, event) -> None:
        if self.loop is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event)

    def status_changed(self, endpoint_id: str, status) -> None:
        self.submit(StatusChanged(endpoint_id, status))

    def endpoint_appeared(self, endpoint_id: str, status=None) -> None:
        self.submit(EndpointAppeared(endpoint_id, status))

    def endpoint_vanished(self, endpoint_id: str) -> None:
        self.submit(EndpointVanished(endpoint_id))

    def set_enabled(self, enabled: bool) -> None:
        self.submit(SettingsChanged(enabled=bool(enabled)))

    def set_resume_delay(self, resume_delay_ms: int) -> None:
        self.submit(SettingsChanged(resume_delay_ms=int(resume_delay_ms)))

    def shutdown(self) -> None:
        if self.loop is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self._begin_shutdown)

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            enabled=self.enabled,
            tracked=len(self.registry),
            playing=self.registry.playing(),
            stack=list(self.registry.stack),
        )

    # ---- loop ----

    def attach(self) -> None:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()

    async def run(self) -> None:
        self.attach()
        # bus start/stop block on D-Bus setup and thread joins; keep them off the loop
        await self.loop.run_in_executor(None, self.bus.start, self)
        await self.reconcile()

        while True:
            event = await self.queue.get()
            if event is _STOP:
                break
            self.handle(event)

        # let already-issued commands land before the engine goes away
        while self._in_flight:
            event = await self.queue.get()
            if isinstance(event, CommandFinished):
                self.handle(event)
        await self.loop.run_in_executor(None, self.bus.stop)
        self._log("Engine stopped.")

    async def run_until_idle(self) -> None:
        """Apply queued events until the queue is empty and no command is in flight."""
        self.attach()
        while True:
            await asyncio.sleep(0)
            if self.queue.empty() and not self._in_flight:
                return
            event = await self.queue.get()
            if event is _STOP:
                continue
            self.handle(event)

    async def reconcile(self) -> None:
        """Startup pass: keep the first player found playing, pause every other one."""
        self.attach()
        try:
            endpoints = await self.bus.list_endpoints()
        except Exception as exc:
            self._log(f"Could not enumerate players: {exc}")
            return

        kept = None
        for endpoint_id, raw_status in endpoints:
            if not endpoint_id:
                continue
            status = parse_status(raw_status) or PlaybackStatus.STOPPED
            self.registry.upsert(endpoint_id, status)
            if status != PlaybackStatus.PLAYING or endpoint_id == kept:
                continue
            if kept is None:
                kept = endpoint_id
            elif self.enabled:
                self._pause(endpoint_id)

        if kept:
            self._log(f"Found {len(endpoints)} players; keeping {kept} playing.")
        else:
            self._log(f"Found {len(endpoints)} players.")

    def handle(self, event) -> None:
        self.attach()
        if isinstance(event, StatusChanged):
            self._on_status(event.endpoint_id, event.status)
        elif isinstance(event, EndpointAppeared):
            self._on_appeared(event.endpoint_id, event.status)
        elif isinstance(event, EndpointVanished):
            self._on_vanished(event.endpoint_id)
        elif isinstance(event, CommandFinished):
            self._on_command_finished(event)
        elif isinstance(event, ResumeDue):
            self._on_resume_due(event.endpoint_id)
        elif isinstance(event, SettingsChanged):
            self._on_settings(event)

    # ---- notifications ----

    def _on_status(self, endpoint_id: str, raw_status) -> None:
        status = parse_status(raw_status)
        if status is None:
            self._log(f"Ignoring status {raw_status!r} from {endpoint_id}.")
            return
        if not endpoint_id:
            return
        self.registry.upsert(endpoint_id, status)

        if status == PlaybackStatus.PLAYING:
            self.registry.clear_auto_paused(endpoint_id)
            self.registry.stack.remove(endpoint_id)
            if self.enabled:
                self._pause_others(endpoint_id)
            return

        if self.registry.is_auto_paused(endpoint_id):
            # echo of our own pause; the stack push already happened
            self.registry.clear_auto_paused(endpoint_id)
            return

        self.registry.stack.remove(endpoint_id)
        if self.enabled:
            self._schedule_resume(endpoint_id)

    def _on_appeared(self, endpoint_id: str, raw_status) -> None:
        if not endpoint_id:
            return
        if endpoint_id not in self.registry:
            self._log(f"Player appeared: {endpoint_id}")
        if parse_status(raw_status) is None:
            if endpoint_id not in self.registry:
                self.registry.upsert(endpoint_id, PlaybackStatus.STOPPED)
            return
        self._on_status(endpoint_id, raw_status)

    def _on_vanished(self, endpoint_id: str) -> None:
        if endpoint_id in self.registry:
            self._log(f"Player vanished: {endpoint_id}")
        self.registry.remove(endpoint_id)
        timer = self._timers.pop(endpoint_id, None)
        if timer:
            timer.cancel()
        if self.enabled and not self.registry.any_playing():
            self._resume_next()

    def _on_settings(self, event: SettingsChanged) -> None:
        if event.resume_delay_ms is not None:
            self.resume_delay_ms = max(0, int(event.resume_delay_ms))
        if event.enabled is not None and event.enabled != self.enabled:
            self.enabled = event.enabled
            if not self.enabled:
                self._cancel_timers()
            self._log("Arbitration enabled." if self.enabled else "Arbitration disabled.")

    # ---- pause / resume ----

    def _pause_others(self, keep: str) -> None:
        for endpoint_id in self.registry.playing():
            if endpoint_id == keep or self.registry.is_auto_paused(endpoint_id):
                continue
            self._pause(endpoint_id)

    def _pause(self, endpoint_id: str) -> None:
        self._log(f"Pausing {endpoint_id}.")
        self.registry.mark_auto_paused(endpoint_id)
        # pushed at issue time so a vanish racing the command still finds it
        self.registry.stack.push(endpoint_id)
        self._issue(Command.PAUSE, endpoint_id)

    def _schedule_resume(self, endpoint_id: str) -> None:
        if self.resume_delay_ms <= 0:
            if not self.registry.any_playing():
                self._resume_next()
            return
        previous = self._timers.pop(endpoint_id, None)
        if previous:
            previous.cancel()
        self._timers[endpoint_id] = self.loop.call_later(
            self.resume_delay_ms / 1000.0,
            self.queue.put_nowait,
            ResumeDue(endpoint_id),
        )

    def _on_resume_due(self, endpoint_id: str) -> None:
        self._timers.pop(endpoint_id, None)
        if not self.enabled:
            return
        # it may have started playing again while we waited (seeking, track change)
        if self.registry.status(endpoint_id) == PlaybackStatus.PLAYING:
            return
        if not self.registry.any_playing():
            self._resume_next()

    def _resume_next(self) -> None:
        if self._resuming is not None:
            return
        while True:
            endpoint_id = self.registry.stack.pop()
            if endpoint_id is None:
                return
            if endpoint_id not in self.registry:
                continue
            self._resuming = endpoint_id
            self._log(f"Resuming {endpoint_id}.")
            self._issue(Command.PLAY, endpoint_id)
            return

    # ---- commands ----

    def _issue(self, command: Command, endpoint_id: str) -> None:
        self._in_flight += 1
        task = self.loop.create_task(self._run_command(command, endpoint_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_command(self, command: Command, endpoint_id: str) -> None:
        ok = False
        try:
            if command == Command.PAUSE:
                ok = await self.bus.pause(endpoint_id)
            else:
                ok = await self.bus.play(endpoint_id)
        except Exception as exc:
            self._log(f"{command.value} {endpoint_id} raised {exc!r}")
            ok = False
        finally:
            self.queue.put_nowait(CommandFinished(endpoint_id, command, bool(ok)))

    def _on_command_finished(self, event: CommandFinished) -> None:
        self._in_flight = max(0, self._in_flight - 1)
        endpoint_id = event.endpoint_id

        if event.command == Command.PAUSE:
            if not event.ok:
                self._log(f"Pause failed for {endpoint_id}; leaving it alone.")
                self.registry.clear_auto_paused(endpoint_id)
                self.registry.stack.remove(endpoint_id)
                return
            if endpoint_id not in self.registry:
                return
            # a genuine play after our pause clears the flag; don't clobber it
            if (
                self.registry.is_auto_paused(endpoint_id)
                or self.registry.status(endpoint_id) != PlaybackStatus.PLAYING
            ):
                self.registry.upsert(endpoint_id, PlaybackStatus.PAUSED)
            # the player that displaced it may have stopped while this was in flight
            if self.enabled and not self.registry.any_playing():
                self._resume_next()
            return

        if self._resuming == endpoint_id:
            self._resuming = None

        if not event.ok:
            self._log(f"Resume failed for {endpoint_id}; dropping it.")
            self.registry.remove(endpoint_id)
            if self.enabled and not self.registry.any_playing():
                self._resume_next()
            return

        if endpoint_id not in self.registry:
            return
        self.registry.upsert(endpoint_id, PlaybackStatus.PLAYING)
        self.registry.clear_auto_paused(endpoint_id)
        if self.enabled and any(eid != endpoint_id for eid in self.registry.playing()):
            # someone else started playing while the resume was in flight
            self._pause(endpoint_id)

    # ---- shutdown ----

    def _cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _begin_shutdown(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        self.enabled = False
        self._cancel_timers()
        self.queue.put_nowait(_STOP)
