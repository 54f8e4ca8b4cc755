from __future__ import annotations

import asyncio
import threading
from typing import Dict, List, Optional, Set, Tuple

import gi

gi.require_version("Gio", "2.0")
from gi.repository import Gio, GLib

from .common import MPRIS_PATH, MPRIS_PLAYER_IFACE, MPRIS_PREFIX, PlaybackStatus, log

DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_IFACE = "org.freedesktop.DBus"
PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"


class GioPlayerBus:
    """
    MPRIS players on the session bus.

    Signals are delivered on a private GLib main loop running in a daemon
    thread and forwarded to the sink. Commands and the startup enumeration are
    blocking D-Bus calls pushed onto the asyncio default executor.
    """

    def __init__(self, call_timeout_ms: int = 2000):
        self._timeout = int(call_timeout_ms)
        self._connection: Optional[Gio.DBusConnection] = None
        self._sink = None
        self._main_loop: Optional[GLib.MainLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._lock = threading.Lock()
        # unique bus name (":1.42") -> MPRIS well-known names it owns
        self._owners: Dict[str, Set[str]] = {}

    def _log(self, message: str) -> None:
        log(message)

    # ---- lifecycle ----

    def start(self, sink) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._sink = sink
        if self._connection is None:
            self._connection = Gio.bus_get_sync(Gio.BusType.SESSION, None)
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        self._ready.wait(timeout=2.0)
        self._log("Watching the session bus for media players.")

    def stop(self) -> None:
        self._sink = None
        if self._main_loop:
            self._main_loop.quit()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        with self._lock:
            self._owners.clear()
        self._log("Stopped watching the session bus.")

    def _run(self):
        context = GLib.MainContext()
        context.push_thread_default()
        self._main_loop = GLib.MainLoop(context)

        subscriptions = [
            self._connection.signal_subscribe(
                DBUS_NAME,
                DBUS_IFACE,
                "NameOwnerChanged",
                DBUS_PATH,
                None,
                Gio.DBusSignalFlags.NONE,
                self._on_name_owner_changed,
            ),
            self._connection.signal_subscribe(
                None,
                PROPERTIES_IFACE,
                "PropertiesChanged",
                MPRIS_PATH,
                None,
                Gio.DBusSignalFlags.NONE,
                self._on_properties_changed,
            ),
        ]

        started = GLib.idle_source_new()
        started.set_callback(self._on_loop_started)
        started.attach(context)

        try:
            self._main_loop.run()
        finally:
            for subscription_id in subscriptions:
                self._connection.signal_unsubscribe(subscription_id)
            context.pop_thread_default()
            self._main_loop = None

    def _on_loop_started(self, *args):
        self._ready.set()
        return GLib.SOURCE_REMOVE

    # ---- owner bookkeeping ----

    def _remember_owner(self, name: str, owner: str) -> None:
        with self._lock:
            self._owners.setdefault(owner, set()).add(name)

    def _forget_owner(self, name: str, owner: str) -> None:
        with self._lock:
            names = self._owners.get(owner)
            if names is None:
                return
            names.discard(name)
            if not names:
                del self._owners[owner]

    def _names_for(self, owner: str) -> List[str]:
        with self._lock:
            return sorted(self._owners.get(owner, ()))

    # ---- signals (GLib thread) ----

    def _on_name_owner_changed(self, connection, sender, path, iface, signal, params):
        name, old_owner, new_owner = params.unpack()
        if not name.startswith(MPRIS_PREFIX) or old_owner == new_owner:
            return
        if old_owner:
            self._forget_owner(name, old_owner)
            sink = self._sink
            if sink:
                sink.endpoint_vanished(name)
        if new_owner:
            self._remember_owner(name, new_owner)
            self._fetch_status(name)

    def _fetch_status(self, name: str) -> None:
        self._connection.call(
            name,
            MPRIS_PATH,
            PROPERTIES_IFACE,
            "Get",
            GLib.Variant("(ss)", (MPRIS_PLAYER_IFACE, "PlaybackStatus")),
            GLib.VariantType.new("(v)"),
            Gio.DBusCallFlags.NONE,
            self._timeout,
            None,
            self._on_status_fetched,
            name,
        )

    def _on_status_fetched(self, connection, result, name):
        try:
            status = connection.call_finish(result).unpack()[0]
        except GLib.Error:
            # player may have vanished already
            status = PlaybackStatus.STOPPED.value
        sink = self._sink
        if sink:
            sink.endpoint_appeared(name, status)

    def _on_properties_changed(self, connection, sender, path, iface, signal, params):
        interface_name, changed, _invalidated = params.unpack()
        if interface_name != MPRIS_PLAYER_IFACE or "PlaybackStatus" not in changed:
            return
        sink = self._sink
        if not sink:
            return
        for name in self._names_for(sender):
            sink.status_changed(name, changed["PlaybackStatus"])

    # ---- blocking calls (executor) ----

    def _call_sync(self, name, path, iface, method, params=None, reply_type=None):
        return self._connection.call_sync(
            name,
            path,
            iface,
            method,
            params,
            reply_type,
            Gio.DBusCallFlags.NONE,
            self._timeout,
            None,
        )

    def _get_status_sync(self, name: str) -> str:
        try:
            reply = self._call_sync(
                name,
                MPRIS_PATH,
                PROPERTIES_IFACE,
                "Get",
                GLib.Variant("(ss)", (MPRIS_PLAYER_IFACE, "PlaybackStatus")),
                GLib.VariantType.new("(v)"),
            )
        except GLib.Error:
            return PlaybackStatus.STOPPED.value
        return reply.unpack()[0]

    def _list_endpoints_sync(self) -> List[Tuple[str, str]]:
        reply = self._call_sync(
            DBUS_NAME, DBUS_PATH, DBUS_IFACE, "ListNames", None, GLib.VariantType.new("(as)")
        )
        endpoints = []
        for name in reply.unpack()[0]:
            if not name.startswith(MPRIS_PREFIX):
                continue
            try:
                owner = self._call_sync(
                    DBUS_NAME,
                    DBUS_PATH,
                    DBUS_IFACE,
                    "GetNameOwner",
                    GLib.Variant("(s)", (name,)),
                    GLib.VariantType.new("(s)"),
                ).unpack()[0]
            except GLib.Error:
                continue
            self._remember_owner(name, owner)
            endpoints.append((name, self._get_status_sync(name)))
        return endpoints

    def _command_sync(self, name: str, method: str) -> bool:
        if self._connection is None:
            return False
        try:
            self._call_sync(name, MPRIS_PATH, MPRIS_PLAYER_IFACE, method)
        except GLib.Error as exc:
            self._log(f"{method} on {name} failed: {exc.message}")
            return False
        return True

    # ---- async API ----

    async def list_endpoints(self) -> List[Tuple[str, str]]:
        if self._connection is None:
            self._connection = Gio.bus_get_sync(Gio.BusType.SESSION, None)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._list_endpoints_sync)

    async def pause(self, endpoint_id: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._command_sync, endpoint_id, "Pause")

    async def play(self, endpoint_id: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._command_sync, endpoint_id, "Play")
