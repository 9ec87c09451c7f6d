"""Group-aware volume and mute control for one Sonos speaker.

A speaker that is part of a stereo pair or zone group shares its volume with
the rest of the group. Reads go to the group coordinator; writes go to every
member of the group (or only to the configured speaker in single speaker mode).
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import aiohttp

from pysonosdial.exceptions import ConfigurationError, ProtocolError
from pysonosdial.protocol import SonosProtocol
from pysonosdial.settings import DEFAULT_PORT, TOPOLOGY_CACHE_TTL, clamp_volume
from pysonosdial.topology import (
    TopologyCache,
    TopologyNode,
    ZoneGroup,
    normalize_host,
    parse_topology_document,
    parse_zone_groups,
)


class SonosSpeaker:
    """Session with one Sonos speaker, resolving its zone group on demand.

    The session is cheap: connect() only stores connection parameters and
    resets cached group information, no network I/O happens until the first
    command.
    """

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        topology_ttl: float = TOPOLOGY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize an unconnected session.

        Args:
            http_session: aiohttp session used for all requests
            topology_ttl: Seconds the zone group state is reused before refetching
            clock: Monotonic time source for the topology cache
        """
        self._logger = logging.getLogger(__name__)
        self._http_session = http_session
        self._protocol: Optional[SonosProtocol] = None

        self._host: Optional[str] = None
        self._port: int = DEFAULT_PORT
        self._single_speaker_mode: bool = False

        # Valid until the next connect()
        self._coordinator_host: Optional[str] = None
        self._coordinator_lock = asyncio.Lock()
        self._topology = TopologyCache(self._fetch_topology, topology_ttl, clock)

    @property
    def host(self) -> Optional[str]:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def single_speaker_mode(self) -> bool:
        return self._single_speaker_mode

    def connect(self, host: str, port: int = DEFAULT_PORT, single_speaker_mode: bool = False):
        """Point the session at a speaker and forget any cached group information."""
        if not host or not host.strip():
            raise ConfigurationError("No speaker host configured")
        # Group members are matched against hosts as they appear in the topology
        self._host = normalize_host(host)
        self._port = port
        self._single_speaker_mode = single_speaker_mode
        self._protocol = SonosProtocol(self._http_session, port)
        self._coordinator_host = None
        self._topology.invalidate()

    def is_connected(self) -> bool:
        return bool(self._host)

    def _require_host(self) -> str:
        if not self._host or self._protocol is None:
            raise ConfigurationError("Not connected to a speaker")
        return self._host

    async def _execute(
        self, host: str, service: str, action: str, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        self._require_host()
        return await self._protocol.execute(host, service, action, params)

    # ========== Topology ==========

    async def _fetch_topology(self) -> TopologyNode:
        result = await self._execute(self._host, "ZoneGroupTopology", "GetZoneGroupState")
        state = result.get("ZoneGroupState")
        if not isinstance(state, str) or not state.strip():
            raise ProtocolError("GetZoneGroupState response has no ZoneGroupState")
        return parse_topology_document(state)

    async def get_available_groups(self) -> list[ZoneGroup]:
        """All zone groups in the household, stereo pairs included."""
        host = self._require_host()
        document = await self._topology.get()
        return parse_zone_groups(document, host)

    async def _find_own_group(self) -> Optional[ZoneGroup]:
        groups = await self.get_available_groups()
        return next((group for group in groups if self._host in group.members), None)

    async def get_group_coordinator(self) -> str:
        """Host of the coordinator of this speaker's group, or this speaker if ungrouped."""
        host = self._require_host()
        async with self._coordinator_lock:
            if self._coordinator_host:
                return self._coordinator_host

            # The coordinator may have moved since the last fetch
            self._topology.invalidate()
            group = await self._find_own_group()
            if group is not None:
                self._coordinator_host = group.coordinator
            else:
                self._logger.warning(f"No zone group found for {host}, using it as its own coordinator")
                self._coordinator_host = host
            self._logger.debug(f"Coordinator for {host} is {self._coordinator_host}")
            return self._coordinator_host

    async def get_group_members(self) -> list[str]:
        """Hosts of every member of this speaker's group, empty if not found."""
        group = await self._find_own_group()
        return list(group.members) if group is not None else []

    # ========== Volume and mute ==========

    async def get_volume(self) -> int:
        """Group volume, read from the coordinator."""
        coordinator = await self.get_group_coordinator()
        result = await self._execute(coordinator, "RenderingControl", "GetVolume", {"Channel": "Master"})
        try:
            return clamp_volume(int(result["CurrentVolume"]))
        except (KeyError, TypeError, ValueError) as err:
            raise ProtocolError(f"Invalid GetVolume response: {result!r}") from err

    async def get_muted(self) -> bool:
        """Group mute state, read from the coordinator."""
        coordinator = await self.get_group_coordinator()
        result = await self._execute(coordinator, "RenderingControl", "GetMute", {"Channel": "Master"})
        current_mute = result.get("CurrentMute")
        if not isinstance(current_mute, str):
            raise ProtocolError(f"Invalid GetMute response: {result!r}")
        return current_mute.strip().lower() in ("1", "true")

    async def set_volume(self, volume: int):
        """Set the volume on this speaker, or on every member of its group."""
        volume = clamp_volume(volume)
        await self._send_to_targets("SetVolume", {"Channel": "Master", "DesiredVolume": volume})

    async def set_muted(self, muted: bool):
        """Set the mute state on this speaker, or on every member of its group."""
        await self._send_to_targets("SetMute", {"Channel": "Master", "DesiredMute": "1" if muted else "0"})

    async def _command_targets(self) -> list[str]:
        host = self._require_host()
        if self._single_speaker_mode:
            return [host]
        members = await self.get_group_members()
        if not members:
            self._logger.warning(f"Could not resolve group members for {host}, sending to it alone")
            return [host]
        return members

    async def _send_to_targets(self, action: str, params: dict[str, Any]):
        """Send one independent request per target host, all in parallel.

        The first failure is raised. Requests already sent to other members are
        not undone.
        """
        targets = await self._command_targets()
        self._logger.info(f"{action} {params} -> {', '.join(targets)}")
        await asyncio.gather(
            *(self._execute(target, "RenderingControl", action, dict(params)) for target in targets)
        )
