"""Sonos volume dial controller.

One SonosVolumeDial serves every dial instance placed in the host UI. Each
instance, keyed by its action id, owns a DialState with:
- A speaker session, dropped after any failure and recreated on next use
- A poll loop picking up volume/mute changes made elsewhere (app, other remotes)
- A debouncer coalescing rapid rotation into a single volume write

UI feedback is always applied before any network round trip completes. The
speaker is only told about the final value once rotation stops.
"""

import asyncio
import logging
from asyncio import Task
from functools import partial
from typing import Any, Callable, Optional

import aiohttp

from pysonosdial.exceptions import SonosDialError
from pysonosdial.listener import DialListener
from pysonosdial.scheduling import Debouncer, RepeatingTask
from pysonosdial.settings import (
    DEFAULT_PORT,
    POLLING_INTERVAL,
    TOPOLOGY_CACHE_TTL,
    VOLUME_CHANGE_DEBOUNCE,
    DialSettings,
    clamp_volume,
)
from pysonosdial.speaker import SonosSpeaker

MUTED_OPACITY = 0.5
UNMUTED_OPACITY = 1.0

ALERT_NO_HOST = "No speaker host configured"
ALERT_CONNECT_FAILED = "Failed to connect to speaker"
ALERT_VOLUME_FAILED = "Failed to update volume"
ALERT_MUTE_FAILED = "Failed to toggle mute"


class DialState:
    """Everything known about one dial instance."""

    def __init__(self, settings: DialSettings):
        self.settings: DialSettings = settings
        self.session: Optional[SonosSpeaker] = None
        self.last_known_volume: int = settings.value
        self.is_muted: bool = False
        self.is_rotating: bool = False

        # Created by the controller when the dial appears
        self.poll_task: Optional[RepeatingTask] = None
        self.debouncer: Optional[Debouncer] = None
        # Fire-and-forget mute commands
        self.pending_commands: set[Task[Any]] = set()

    @property
    def polling(self) -> bool:
        return self.poll_task is not None and self.poll_task.active


class SonosVolumeDial:
    """Controls Sonos volume and mute from any number of dial instances."""

    def __init__(
        self,
        listener: DialListener,
        http_session: Optional[aiohttp.ClientSession] = None,
        port: int = DEFAULT_PORT,
        poll_interval: float = POLLING_INTERVAL,
        debounce_delay: float = VOLUME_CHANGE_DEBOUNCE,
        topology_ttl: float = TOPOLOGY_CACHE_TTL,
        speaker_factory: Optional[Callable[[], SonosSpeaker]] = None,
    ):
        """Initialize the controller.

        Args:
            listener: Receives feedback, settings and alerts for the host UI
            http_session: Shared aiohttp session, created on first use if omitted
            port: Speaker UPnP port
            poll_interval: Seconds between the end of one poll and the next
            debounce_delay: Idle time after the last rotation before sending the volume
            topology_ttl: Seconds the zone group state is reused
            speaker_factory: Creates unconnected speaker sessions (for testing)
        """
        self._logger = logging.getLogger(__name__)
        self._listener = listener
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._port = port
        self._poll_interval = poll_interval
        self._debounce_delay = debounce_delay
        self._topology_ttl = topology_ttl
        self._speaker_factory = speaker_factory or self._create_speaker

        # action id -> state; inserted on appear, removed on disappear
        self._states: dict[str, DialState] = {}

    @property
    def action_ids(self) -> list[str]:
        return list(self._states.keys())

    def get_state(self, action_id: str) -> Optional[DialState]:
        return self._states.get(action_id)

    def _create_speaker(self) -> SonosSpeaker:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return SonosSpeaker(self._http_session, topology_ttl=self._topology_ttl)

    def _is_live(self, action_id: str, state: DialState) -> bool:
        return self._states.get(action_id) is state

    def _connect(self, state: DialState, host: Optional[str], single_speaker_mode: bool) -> SonosSpeaker:
        mode = "single speaker mode" if single_speaker_mode else "group mode"
        self._logger.info(f"Connecting to speaker {host} ({mode})")
        speaker = self._speaker_factory()
        speaker.connect(host, self._port, single_speaker_mode)
        state.session = speaker
        return speaker

    def _ensure_session(self, state: DialState, host: Optional[str]) -> SonosSpeaker:
        if state.session is None or not state.session.is_connected():
            return self._connect(state, host, state.settings.single_speaker_mode)
        return state.session

    @staticmethod
    def _drop_session(state: DialState, speaker: Optional[SonosSpeaker]):
        # A newer session may have replaced the failed one meanwhile
        if speaker is None or state.session is speaker:
            state.session = None

    # ========== Host UI output ==========

    def _show_volume(self, action_id: str, state: DialState, volume: int):
        opacity = MUTED_OPACITY if state.is_muted else UNMUTED_OPACITY
        self._listener.set_feedback(action_id, volume, opacity)

    def _persist(self, action_id: str, state: DialState, settings: DialSettings):
        state.settings = settings
        self._listener.set_settings(action_id, settings.to_dict())

    def _show_alert(self, action_id: str, message: str):
        self._logger.error(f"Dial {action_id}: {message}")
        self._listener.show_alert(action_id, message)

    # ========== Polling ==========

    def _start_polling(self, action_id: str, state: DialState):
        if state.poll_task is not None and state.poll_task.start():
            self._logger.info(f"Dial {action_id}: polling started")

    def _stop_polling(self, action_id: str, state: DialState):
        if state.polling:
            self._logger.info(f"Dial {action_id}: polling stopped")
        if state.poll_task is not None:
            state.poll_task.cancel()

    async def _poll_once(self, action_id: str, state: DialState):
        """One poll cycle: read volume and mute, reconcile with what the dial shows."""
        if not self._is_live(action_id, state):
            state.poll_task.cancel()
            return

        settings = state.settings
        if not settings.speaker_host:
            self._logger.debug(f"Dial {action_id}: no speaker host, stopping polling")
            self._stop_polling(action_id, state)
            return

        speaker = state.session
        if speaker is None or not speaker.is_connected():
            try:
                speaker = self._connect(state, settings.speaker_host, settings.single_speaker_mode)
            except SonosDialError as err:
                self._logger.warning(f"Dial {action_id}: reconnect failed, skipping poll: {err}")
                return

        try:
            volume, muted = await self._read_state(speaker)
        except SonosDialError as err:
            # Never fatal, the next cycle reconnects
            self._logger.warning(f"Dial {action_id}: failed to poll speaker state: {err}")
            self._drop_session(state, speaker)
            return

        if not self._is_live(action_id, state):
            return
        if volume == state.last_known_volume and muted == state.is_muted:
            return
        if state.is_rotating:
            self._logger.debug(f"Dial {action_id}: ignoring polled state while rotating")
            return

        self._logger.info(f"Dial {action_id}: speaker changed externally - volume: {volume}, muted: {muted}")
        state.last_known_volume = volume
        state.is_muted = muted
        self._show_volume(action_id, state, volume)
        self._persist(action_id, state, state.settings.with_value(volume))

    @staticmethod
    async def _read_state(speaker: SonosSpeaker) -> tuple[int, bool]:
        volume, muted = await asyncio.gather(speaker.get_volume(), speaker.get_muted())
        return volume, muted

    async def _connect_and_sync(self, action_id: str, state: DialState) -> bool:
        """Connect to the configured speaker, show its state and start polling."""
        settings = state.settings
        speaker = self._connect(state, settings.speaker_host, settings.single_speaker_mode)
        try:
            volume, muted = await self._read_state(speaker)
        except SonosDialError as err:
            self._logger.error(f"Dial {action_id}: failed to connect to {settings.speaker_host}: {err}")
            if self._is_live(action_id, state):
                self._drop_session(state, speaker)
                self._show_alert(action_id, ALERT_CONNECT_FAILED)
            return False

        if not self._is_live(action_id, state) or state.session is not speaker:
            return False

        state.last_known_volume = volume
        state.is_muted = muted
        self._show_volume(action_id, state, volume)
        self._persist(action_id, state, state.settings.with_value(volume))
        self._start_polling(action_id, state)
        return True

    # ========== Dial events ==========

    async def async_will_appear(self, action_id: str, settings: Optional[dict[str, Any]]):
        """A dial instance became visible."""
        dial_settings = DialSettings.from_dict(settings)
        state = self._states.get(action_id)
        if state is None:
            state = DialState(dial_settings)
            state.poll_task = RepeatingTask(
                partial(self._poll_once, action_id, state), self._poll_interval, name=f"poll {action_id}"
            )
            state.debouncer = Debouncer(self._debounce_delay, name=f"volume {action_id}")
            self._states[action_id] = state
        state.settings = dial_settings

        self._show_volume(action_id, state, dial_settings.value)

        if not dial_settings.speaker_host:
            self._logger.warning(f"Dial {action_id}: no speaker host configured")
            state.last_known_volume = dial_settings.value
            self._persist(action_id, state, dial_settings)
            return

        if not await self._connect_and_sync(action_id, state) and self._is_live(action_id, state):
            # Keep the stored settings in sync even though the speaker is unreachable
            self._persist(action_id, state, state.settings)

    def on_dial_rotate(self, action_id: str, ticks: int, settings: Optional[dict[str, Any]]):
        """The dial was turned by a number of ticks (negative counter-clockwise)."""
        state = self._states.get(action_id)
        if state is None:
            self._logger.debug(f"Ignoring rotation for unknown dial {action_id}")
            return

        dial_settings = DialSettings.from_dict(settings, default_value=state.last_known_volume)
        new_value = clamp_volume(dial_settings.value + ticks * dial_settings.volume_step)

        state.is_rotating = True
        state.last_known_volume = new_value
        self._show_volume(action_id, state, new_value)
        self._persist(action_id, state, dial_settings.with_value(new_value))

        if not dial_settings.speaker_host:
            state.debouncer.cancel()
            self._show_alert(action_id, ALERT_NO_HOST)
            state.is_rotating = False
            return

        state.debouncer.schedule(self._flush_volume, action_id, state, dial_settings.speaker_host, new_value)

    async def _flush_volume(self, action_id: str, state: DialState, host: str, volume: int):
        """Send the final volume once rotation has been idle for the debounce delay."""
        if not self._is_live(action_id, state):
            return

        speaker = None
        try:
            speaker = self._ensure_session(state, host)
            if state.is_muted:
                await speaker.set_muted(False)
                state.is_muted = False
                if self._is_live(action_id, state):
                    self._show_volume(action_id, state, volume)
            await speaker.set_volume(volume)
            self._logger.debug(f"Dial {action_id}: volume set to {volume}")
        except SonosDialError as err:
            self._logger.error(f"Dial {action_id}: failed to set volume to {volume}: {err}")
            if self._is_live(action_id, state):
                self._drop_session(state, speaker)
                self._show_alert(action_id, ALERT_VOLUME_FAILED)
        except Exception:
            self._logger.error(f"Dial {action_id}: unexpected error setting volume to {volume}", exc_info=True)
            if self._is_live(action_id, state):
                self._drop_session(state, speaker)
                self._show_alert(action_id, ALERT_VOLUME_FAILED)

        # Cancellation means a newer rotation owns is_rotating now
        if self._is_live(action_id, state):
            state.is_rotating = False
            self._start_polling(action_id, state)

    def on_dial_up(self, action_id: str, settings: Optional[dict[str, Any]]):
        """The dial was pressed: toggle mute."""
        self._toggle_mute(action_id, settings)

    def on_touch_tap(self, action_id: str, settings: Optional[dict[str, Any]]):
        """The touch strip above the dial was tapped: toggle mute."""
        self._toggle_mute(action_id, settings)

    def _toggle_mute(self, action_id: str, settings: Optional[dict[str, Any]]):
        state = self._states.get(action_id)
        if state is None:
            self._logger.debug(f"Ignoring mute toggle for unknown dial {action_id}")
            return

        dial_settings = DialSettings.from_dict(settings, default_value=state.last_known_volume)
        if not dial_settings.speaker_host:
            self._logger.warning(f"Dial {action_id}: no speaker host configured")
            self._show_alert(action_id, ALERT_NO_HOST)
            return

        # Optimistic, the poll loop reconciles with the speaker later
        muted = not state.is_muted
        state.is_muted = muted
        self._show_volume(action_id, state, state.last_known_volume)

        task = asyncio.get_running_loop().create_task(
            self._send_mute(action_id, state, dial_settings.speaker_host, muted)
        )
        state.pending_commands.add(task)
        task.add_done_callback(state.pending_commands.discard)

    async def _send_mute(self, action_id: str, state: DialState, host: str, muted: bool):
        speaker = None
        try:
            if state.session is None or not state.session.is_connected():
                speaker = self._connect(state, host, state.settings.single_speaker_mode)
            else:
                speaker = state.session
            self._start_polling(action_id, state)
            await speaker.set_muted(muted)
            self._logger.info(f"Dial {action_id}: mute set to {muted}")
        except SonosDialError as err:
            self._logger.error(f"Dial {action_id}: failed to set mute to {muted}: {err}")
            if self._is_live(action_id, state):
                self._drop_session(state, speaker)
                self._show_alert(action_id, ALERT_MUTE_FAILED)
        except Exception:
            self._logger.error(f"Dial {action_id}: unexpected error setting mute to {muted}", exc_info=True)
            if self._is_live(action_id, state):
                self._drop_session(state, speaker)
                self._show_alert(action_id, ALERT_MUTE_FAILED)

    async def async_did_receive_settings(self, action_id: str, settings: Optional[dict[str, Any]]):
        """The user edited the dial's settings."""
        state = self._states.get(action_id)
        if state is None:
            self._logger.debug(f"Ignoring settings for unknown dial {action_id}")
            return

        previous = state.settings
        dial_settings = DialSettings.from_dict(settings, default_value=state.last_known_volume)
        state.settings = dial_settings
        if dial_settings.connection_key == previous.connection_key:
            return

        self._logger.info(f"Dial {action_id}: speaker settings changed")
        state.session = None
        self._stop_polling(action_id, state)

        if dial_settings.speaker_host:
            await self._connect_and_sync(action_id, state)
        else:
            state.last_known_volume = dial_settings.value

    def on_will_disappear(self, action_id: str):
        """The dial instance was removed. Later events for it are ignored."""
        state = self._states.pop(action_id, None)
        if state is None:
            return
        self._teardown(state)
        self._logger.debug(f"Dial {action_id} removed")

    @staticmethod
    def _teardown(state: DialState):
        if state.debouncer is not None:
            state.debouncer.cancel()
        if state.poll_task is not None:
            state.poll_task.cancel()
        for task in list(state.pending_commands):
            task.cancel()
        state.pending_commands.clear()
        state.session = None

    async def async_close(self):
        """Remove every dial instance and close the HTTP session if it was created here."""
        for action_id in list(self._states.keys()):
            self.on_will_disappear(action_id)
        if self._owns_http_session and self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None
