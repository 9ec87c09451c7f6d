import pytest

from pysonosdial.exceptions import ProtocolError
from pysonosdial.topology import (
    GroupMember,
    NodeKind,
    TopologyCache,
    TopologyNode,
    ZoneGroup,
    collect_group_members,
    extract_host,
    normalize_host,
    parse_topology_document,
    parse_zone_groups,
    unique_members,
)
from tests.conftest import KITCHEN, LIVING_ROOM, LIVING_ROOM_RIGHT, STEREO_PAIR_TOPOLOGY


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_from_document_tags_every_node():
    node = TopologyNode.from_document({"a": ["x", {"b": None}]})
    assert node.kind is NodeKind.MAP
    assert node.get("a").kind is NodeKind.LIST
    assert [child.kind for child in node.get("a").children()] == [NodeKind.SCALAR, NodeKind.MAP]
    assert node.get("missing") is None
    assert node.get("a").get("b") is None


def test_collect_group_members_walks_arbitrary_nesting():
    document = TopologyNode.from_document({
        "outer": [
            {"@UUID": "RINCON_1", "@Location": "http://10.0.0.1:1400/xml", "@ZoneName": "Den"},
            [[{"deep": {"@UUID": "RINCON_2", "@Location": "http://10.0.0.2:1400/xml"}}]],
            {"@UUID": "RINCON_3"},
            {"@Location": "http://10.0.0.4:1400/xml"},
        ]
    })
    members = collect_group_members(document, [])
    assert members == [
        GroupMember("RINCON_1", "http://10.0.0.1:1400/xml", "Den"),
        GroupMember("RINCON_2", "http://10.0.0.2:1400/xml", None),
    ]


def test_unique_members_keeps_first_occurrence():
    members = [
        GroupMember("RINCON_1", "http://10.0.0.1:1400/xml", "First"),
        GroupMember("RINCON_2", "http://10.0.0.2:1400/xml"),
        GroupMember("RINCON_1", "http://10.0.0.9:1400/xml", "Second"),
    ]
    assert unique_members(members) == members[:2]


@pytest.mark.parametrize(
    "location, host",
    [
        ("http://10.0.0.5:1400/xml/device_description.xml", "10.0.0.5"),
        ("http://sonos-kitchen.local/xml", "sonos-kitchen.local"),
        ("https://10.0.0.5", "10.0.0.5"),
        ("http://Sonos-Kitchen.LOCAL:1400/xml", "sonos-kitchen.local"),
        ("http://[FE80::1]:1400/xml/device_description.xml", "[fe80::1]"),
        ("", None),
        (None, None),
        ("not a url", None),
    ],
)
def test_extract_host(location, host):
    assert extract_host(location) == host


@pytest.mark.parametrize(
    "host, normalized",
    [
        ("10.0.0.5", "10.0.0.5"),
        (" Living-Room.LOCAL ", "living-room.local"),
        ("fe80::1", "[fe80::1]"),
        ("[FE80::1]", "[fe80::1]"),
    ],
)
def test_normalize_host(host, normalized):
    assert normalize_host(host) == normalized


def test_stereo_pair_yields_one_group_with_two_hosts():
    groups = parse_zone_groups(parse_topology_document(STEREO_PAIR_TOPOLOGY), LIVING_ROOM)

    assert groups[0] == ZoneGroup(LIVING_ROOM_RIGHT, "Living Room", (LIVING_ROOM, LIVING_ROOM_RIGHT))
    assert groups[1] == ZoneGroup(KITCHEN, "Kitchen", (KITCHEN,))
    assert len(groups) == 2


def test_aliased_members_on_the_same_host_are_deduplicated():
    topology = """<ZoneGroupState><ZoneGroups>
    <ZoneGroup Coordinator="RINCON_X" ZoneGroupName="Bedroom">
      <ZoneGroupMember UUID="RINCON_A" Location="http://10.0.0.5:1400/xml"/>
      <ZoneGroupMember UUID="RINCON_A2" Location="http://10.0.0.5:1400/other.xml"/>
      <ZoneGroupMember UUID="RINCON_B" Location="http://10.0.0.6:1400/xml"/>
    </ZoneGroup></ZoneGroups></ZoneGroupState>"""
    groups = parse_zone_groups(parse_topology_document(topology), "10.0.0.9")

    # Unknown coordinator UUID falls back to the first member
    assert groups == [ZoneGroup("10.0.0.5", "Bedroom", ("10.0.0.5", "10.0.0.6"))]


def test_group_without_members_falls_back_to_session_host():
    topology = '<ZoneGroups><ZoneGroup Coordinator="RINCON_A"/></ZoneGroups>'
    groups = parse_zone_groups(parse_topology_document(topology), "10.0.0.9")
    assert groups == [ZoneGroup("10.0.0.9", "10.0.0.9", ())]


def test_no_declared_groups():
    assert parse_zone_groups(parse_topology_document("<ZoneGroupState><ZoneGroups/></ZoneGroupState>"), "h") == []
    assert parse_zone_groups(parse_topology_document("<Other/>"), "h") == []


def test_parse_topology_document_rejects_malformed_xml():
    with pytest.raises(ProtocolError):
        parse_topology_document("<ZoneGroupState><ZoneGroups>")


async def test_cache_reuses_document_within_ttl():
    clock = FakeClock()
    fetches = []

    async def fetch():
        fetches.append(clock.now)
        return TopologyNode.from_document({"fetch": str(len(fetches))})

    cache = TopologyCache(fetch, ttl=30.0, clock=clock)
    first = await cache.get()
    clock.now += 29.9
    second = await cache.get()
    assert first is second
    assert len(fetches) == 1

    clock.now += 0.2
    third = await cache.get()
    assert third is not first
    assert len(fetches) == 2
    assert cache.fetch_timestamp == clock.now


async def test_cache_invalidate_forces_refetch():
    clock = FakeClock()
    fetches = []

    async def fetch():
        fetches.append(clock.now)
        return TopologyNode.from_document({})

    cache = TopologyCache(fetch, ttl=30.0, clock=clock)
    await cache.get()
    cache.invalidate()
    assert not cache.is_fresh()
    await cache.get()
    assert len(fetches) == 2
