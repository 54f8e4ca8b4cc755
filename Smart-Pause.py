import asyncio
import sys
import threading
from typing import Optional

import pystray
from pystray import MenuItem as Item, Menu as Menu
from PIL import Image, ImageDraw

import gi
gi.require_version("Gtk", "3.0")
from gi.repository import Gtk

from libraries.smart_pause import ArbitrationEngine, build_player_bus
from libraries.smart_pause.common import APP_NAME, MAX_RESUME_DELAY_MS, log
from libraries.smart_pause.config import clamp_resume_delay, load_config, save_config


# -------------------- Core thread --------------------

class PauseCore:
    """
    Runs in an asyncio loop (background thread). Owns the arbitration engine
    while smart pause is enabled; a fresh engine, with empty history, is built
    every time it is switched back on. Tray callbacks call into this using
    thread-safe methods.
    """
    def __init__(self, enabled: bool, resume_delay_ms: int):
        self.enabled = enabled
        self.resume_delay_ms = resume_delay_ms
        self.engine: Optional[ArbitrationEngine] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._engine_task: Optional[asyncio.Task] = None
        self._snapshot = None
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # UI callback hook (set by tray app)
        self.on_status_change = lambda: None

    def _log(self, message: str) -> None:
        log(message)

    # ---- public, thread-safe entrypoints ----

    def start_in_thread(self):
        self._thread = threading.Thread(target=self._thread_main, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 5.0):
        self._stop_evt.set()
        if self.loop:
            self.loop.call_soon_threadsafe(lambda: None)
        if self._thread:
            self._thread.join(timeout=timeout)

    def ui_set_enabled(self, enabled: bool):
        if self.loop:
            self.loop.call_soon_threadsafe(
                lambda: asyncio.create_task(self._set_enabled(bool(enabled)))
            )

    def ui_set_resume_delay(self, resume_delay_ms: int):
        if self.loop:
            self.loop.call_soon_threadsafe(
                lambda: asyncio.create_task(self._set_resume_delay(int(resume_delay_ms)))
            )

    def status_text(self) -> str:
        if not self.enabled:
            return "Disabled"
        snapshot = self._snapshot
        if snapshot is None:
            return "Session bus unavailable"
        return snapshot.describe().capitalize()

    # ---- internal thread/loop ----

    def _thread_main(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.loop.run_until_complete(self._run())
        self.loop.close()

    async def _run(self):
        if self.enabled:
            await self._start_engine()
        self._notify()
        try:
            while not self._stop_evt.is_set():
                await asyncio.sleep(0.5)
                self._refresh_snapshot()
        finally:
            await self._stop_engine()

    def _notify(self):
        try:
            self.on_status_change()
        except Exception:
            pass

    def _refresh_snapshot(self):
        snapshot = self.engine.snapshot() if self.engine else None
        if snapshot != self._snapshot:
            self._snapshot = snapshot
            self._notify()

    async def _start_engine(self):
        if self.engine:
            return
        try:
            bus = build_player_bus()
        except RuntimeError as exc:
            self._log(str(exc))
            return
        engine = ArbitrationEngine(bus, resume_delay_ms=self.resume_delay_ms)
        task = asyncio.create_task(engine.run())
        task.add_done_callback(lambda t: self._on_engine_done(engine, t))
        self.engine = engine
        self._engine_task = task
        self._log("Smart pause enabled.")

    def _on_engine_done(self, engine: ArbitrationEngine, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._log(f"Engine stopped unexpectedly: {exc}")
        if self.engine is engine:
            self.engine = None
            self._engine_task = None
            self._refresh_snapshot()

    async def _stop_engine(self):
        engine, task = self.engine, self._engine_task
        self.engine = None
        self._engine_task = None
        if engine is None:
            return
        engine.shutdown()
        if task:
            await asyncio.wait({task}, timeout=5.0)
        self._log("Smart pause disabled.")

    async def _set_enabled(self, enabled: bool):
        self.enabled = enabled
        if enabled:
            await self._start_engine()
        else:
            await self._stop_engine()
        self._refresh_snapshot()
        self._notify()

    async def _set_resume_delay(self, resume_delay_ms: int):
        self.resume_delay_ms = resume_delay_ms
        if self.engine:
            self.engine.set_resume_delay(resume_delay_ms)
        self._log(f"Resume delay set to {resume_delay_ms} ms.")
        self._notify()


# -------------------- Tray UI --------------------

def prompt_resume_delay(current_ms: int) -> Optional[int]:
    """Spin-button dialog for the resume delay; None when cancelled."""
    dialog = Gtk.Dialog(title=f"{APP_NAME} Preferences")
    dialog.add_buttons("Cancel", Gtk.ResponseType.CANCEL, "Save", Gtk.ResponseType.OK)
    dialog.set_default_response(Gtk.ResponseType.OK)

    row = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=8)
    row.set_border_width(12)
    row.pack_start(Gtk.Label(label="Resume delay (ms):"), False, False, 0)
    spin = Gtk.SpinButton.new_with_range(0, MAX_RESUME_DELAY_MS, 100)
    spin.set_value(clamp_resume_delay(current_ms))
    spin.set_activates_default(True)
    row.pack_start(spin, True, True, 0)
    dialog.get_content_area().add(row)

    dialog.show_all()
    response = dialog.run()
    spin.update()
    value = spin.get_value_as_int()
    dialog.destroy()
    if response != Gtk.ResponseType.OK:
        return None
    return value


def make_icon(enabled: bool) -> Image.Image:
    """
    Pause glyph on a dot:
    - Enabled: green
    - Disabled: gray
    """
    size = 64
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    d = ImageDraw.Draw(img)

    fill = (60, 180, 75, 255) if enabled else (130, 130, 130, 255)
    d.ellipse((6, 6, 58, 58), fill=fill, outline=(20, 20, 20, 255), width=3)
    d.rectangle((22, 18, 29, 46), fill=(255, 255, 255, 255))
    d.rectangle((35, 18, 42, 46), fill=(255, 255, 255, 255))
    return img


class TrayApp:
    def __init__(self):
        self.cfg = load_config()
        self.core = PauseCore(
            enabled=bool(self.cfg.get("enabled", True)),
            resume_delay_ms=clamp_resume_delay(self.cfg.get("resume_delay_ms")),
        )
        self.core.on_status_change = self._refresh_tray
        self.icon = pystray.Icon(APP_NAME, make_icon(self.core.enabled), APP_NAME, menu=self._build_menu())

    def _build_menu(self):
        return Menu(
            Item("Smart Pause", self._toggle_enabled, checked=lambda item: self.core.enabled),
            Item("Resume Delay…", self._configure_resume_delay),
            Item(lambda _item: f"Status: {self.core.status_text()}", None, enabled=False),
            Item("Exit", self._exit),
        )

    def _refresh_tray(self):
        # Called from core thread; marshal to tray thread
        def do():
            self.icon.icon = make_icon(self.core.enabled)
            self.icon.menu = self._build_menu()
            self.icon.title = f"{APP_NAME} - {self.core.status_text()}"
        try:
            q = getattr(self.icon, "_handler_queue", None)
            if q is not None:
                q.put(do)
            else:
                do()
        except Exception:
            pass

    def _toggle_enabled(self, icon=None, item=None):
        enabled = not self.core.enabled
        self.cfg["enabled"] = enabled
        save_config(self.cfg)
        self.core.ui_set_enabled(enabled)

    def _configure_resume_delay(self, icon=None, item=None):
        delay = prompt_resume_delay(self.cfg.get("resume_delay_ms", self.core.resume_delay_ms))
        if delay is None:
            return
        delay = clamp_resume_delay(delay)
        self.cfg["resume_delay_ms"] = delay
        save_config(self.cfg)
        self.core.ui_set_resume_delay(delay)

    def _exit(self, icon=None, item=None):
        self.core.stop()
        self.icon.stop()

    def run(self):
        if sys.platform == "win32":
            print(f"{APP_NAME} needs an MPRIS session bus and only runs on Linux.")
            sys.exit(1)
        self.core.start_in_thread()
        self.icon.run()


if __name__ == "__main__":
    TrayApp().run()
