"""Zone group topology: parsing, group resolution and caching.

The zone group state document is loosely structured: members can be nested
inside other members (satellites, stereo pair channels) and any element can
be a single object or a list. It is wrapped in a TopologyNode tree and walked
recursively instead of guessing at its shape.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple, Optional
from urllib.parse import urlsplit
from xml.parsers.expat import ExpatError

import xmltodict

from pysonosdial.exceptions import ProtocolError
from pysonosdial.settings import TOPOLOGY_CACHE_TTL

_LOGGER = logging.getLogger(__name__)


class NodeKind(Enum):
    SCALAR = "scalar"
    LIST = "list"
    MAP = "map"


class TopologyNode:
    """A node of the parsed topology document: a scalar, an ordered list or a keyed map."""

    def __init__(self, kind: NodeKind, value: Any):
        self._kind = kind
        self._value = value

    @property
    def kind(self) -> NodeKind:
        return self._kind

    @property
    def value(self) -> Any:
        return self._value

    @classmethod
    def from_document(cls, document: Any) -> "TopologyNode":
        """Wrap a document parsed by xmltodict (dicts, lists and strings)."""
        if isinstance(document, dict):
            return cls(NodeKind.MAP, {key: cls.from_document(value) for key, value in document.items()})
        if isinstance(document, list):
            return cls(NodeKind.LIST, [cls.from_document(item) for item in document])
        return cls(NodeKind.SCALAR, document)

    def get(self, key: str) -> Optional["TopologyNode"]:
        """Child of a map node, None for missing keys and non-map nodes."""
        if self._kind is not NodeKind.MAP:
            return None
        return self._value.get(key)

    def attribute(self, name: str) -> Optional[str]:
        """Text of an XML attribute on a map node."""
        node = self.get(f"@{name}")
        if node is None or node.kind is not NodeKind.SCALAR or not node.value:
            return None
        return node.value

    def children(self) -> list["TopologyNode"]:
        if self._kind is NodeKind.MAP:
            return list(self._value.values())
        if self._kind is NodeKind.LIST:
            return list(self._value)
        return []

    def items(self) -> list["TopologyNode"]:
        """Elements of a list node; any other node is a list of one."""
        if self._kind is NodeKind.LIST:
            return list(self._value)
        return [self]


class GroupMember(NamedTuple):
    uuid: str
    location: str
    name: Optional[str] = None


class ZoneGroup(NamedTuple):
    """A set of speakers playing in sync, addressed through its coordinator."""
    coordinator: str
    name: str
    members: tuple[str, ...]


def parse_topology_document(text: str) -> TopologyNode:
    """Parse the XML zone group state into a TopologyNode tree."""
    try:
        return TopologyNode.from_document(xmltodict.parse(text))
    except ExpatError as err:
        raise ProtocolError(f"Malformed zone group state: {err}") from err


def normalize_host(host: str) -> str:
    """Lowercase a host and bracket IPv6 literals so it can be put in a URL."""
    host = host.strip().lower()
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return host


def extract_host(location: Optional[str]) -> Optional[str]:
    """Host of a member location, e.g. ``http://10.0.0.5:1400/xml/device_description.xml`` -> ``10.0.0.5``.

    IPv6 hosts keep their brackets: ``http://[fe80::1]:1400/...`` -> ``[fe80::1]``.
    """
    if not location:
        return None
    try:
        hostname = urlsplit(location).hostname
    except ValueError:
        return None
    return normalize_host(hostname) if hostname else None


def collect_group_members(node: Optional[TopologyNode], members: list[GroupMember]) -> list[GroupMember]:
    """Recursively collect every node carrying both a UUID and a Location."""
    if node is None:
        return members

    if node.kind is NodeKind.MAP:
        uuid = node.attribute("UUID")
        location = node.attribute("Location")
        if uuid and location:
            name = node.attribute("ZoneName") or node.attribute("ZoneGroupName")
            members.append(GroupMember(uuid, location, name))

    for child in node.children():
        collect_group_members(child, members)
    return members


def unique_members(members: list[GroupMember]) -> list[GroupMember]:
    """Drop members whose UUID was already seen, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for member in members:
        if member.uuid not in seen:
            seen.add(member.uuid)
            result.append(member)
    return result


def parse_zone_groups(document: TopologyNode, fallback_host: str) -> list[ZoneGroup]:
    """Build one ZoneGroup per declared ZoneGroup element.

    Args:
        document: Parsed zone group state
        fallback_host: Coordinator to use when a group has no member with a usable location
    """
    root = document.get("ZoneGroupState") or document
    zone_groups = root.get("ZoneGroups")
    declared = zone_groups.get("ZoneGroup") if zone_groups is not None else None
    if declared is None:
        return []

    groups = []
    for group in declared.items():
        members = unique_members(collect_group_members(group, []))

        coordinator_uuid = group.attribute("Coordinator")
        coordinator_member = next((m for m in members if m.uuid == coordinator_uuid), None)
        if coordinator_member is None and members:
            coordinator_member = members[0]

        coordinator = None
        if coordinator_member is not None:
            coordinator = extract_host(coordinator_member.location)
        coordinator = coordinator or fallback_host

        name = (
            group.attribute("ZoneGroupName")
            or (coordinator_member.name if coordinator_member else None)
            or coordinator
        )

        hosts = []
        for member in members:
            host = extract_host(member.location)
            if host and host not in hosts:
                hosts.append(host)

        groups.append(ZoneGroup(coordinator, name, tuple(hosts)))
    return groups


class TopologyCache:
    """Holds the last fetched topology document for a bounded time."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[TopologyNode]],
        ttl: float = TOPOLOGY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._ttl = ttl
        self._clock = clock
        self._document: Optional[TopologyNode] = None
        self._fetch_timestamp: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def fetch_timestamp(self) -> Optional[float]:
        return self._fetch_timestamp

    def is_fresh(self) -> bool:
        if self._document is None or self._fetch_timestamp is None:
            return False
        return self._clock() - self._fetch_timestamp < self._ttl

    def invalidate(self):
        self._document = None
        self._fetch_timestamp = None

    async def get(self) -> TopologyNode:
        """Return the cached document, fetching it if missing or expired."""
        async with self._lock:
            if self.is_fresh():
                _LOGGER.debug("Using cached zone group state")
                return self._document
            _LOGGER.debug("Fetching zone group state")
            document = await self._fetch()
            self._document = document
            self._fetch_timestamp = self._clock()
            return document
