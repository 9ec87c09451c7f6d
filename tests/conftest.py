import asyncio
from xml.sax.saxutils import escape

import aiohttp
import pytest

from pysonosdial.exceptions import ConfigurationError, TransportError
from pysonosdial.listener import DialListener
from pysonosdial.settings import DEFAULT_PORT

LIVING_ROOM = "10.0.0.5"
LIVING_ROOM_RIGHT = "10.0.0.6"
KITCHEN = "10.0.0.7"
OFFICE = "10.0.0.8"

# A stereo pair (Living Room, coordinator is the right channel) plus a standalone Kitchen.
# The left channel is repeated as a satellite of the right one.
STEREO_PAIR_TOPOLOGY = f"""<ZoneGroupState><ZoneGroups>
<ZoneGroup Coordinator="RINCON_B" ID="RINCON_B:12">
  <ZoneGroupMember UUID="RINCON_A" Location="http://{LIVING_ROOM}:1400/xml/device_description.xml"
      ZoneName="Living Room" ChannelMapSet="RINCON_A:LF,LF;RINCON_B:RF,RF"/>
  <ZoneGroupMember UUID="RINCON_B" Location="http://{LIVING_ROOM_RIGHT}:1400/xml/device_description.xml"
      ZoneName="Living Room" Invisible="1">
    <Satellite UUID="RINCON_A" Location="http://{LIVING_ROOM}:1400/xml/device_description.xml" ZoneName="Living Room"/>
  </ZoneGroupMember>
</ZoneGroup>
<ZoneGroup Coordinator="RINCON_C" ID="RINCON_C:3">
  <ZoneGroupMember UUID="RINCON_C" Location="http://{KITCHEN}:1400/xml/device_description.xml" ZoneName="Kitchen"/>
</ZoneGroup>
</ZoneGroups><VanishedDevices/></ZoneGroupState>"""

# Three speakers grouped together, coordinated by the Kitchen
PARTY_TOPOLOGY = f"""<ZoneGroupState><ZoneGroups>
<ZoneGroup Coordinator="RINCON_C" ID="RINCON_C:7">
  <ZoneGroupMember UUID="RINCON_C" Location="http://{KITCHEN}:1400/xml/device_description.xml" ZoneName="Kitchen"/>
  <ZoneGroupMember UUID="RINCON_A" Location="http://{LIVING_ROOM}:1400/xml/device_description.xml" ZoneName="Living Room"/>
  <ZoneGroupMember UUID="RINCON_D" Location="http://{OFFICE}:1400/xml/device_description.xml" ZoneName="Office"/>
</ZoneGroup>
</ZoneGroups></ZoneGroupState>"""


def control_url(host: str, service_path: str) -> str:
    return f"http://{host}:1400/{service_path}/Control"


def rendering_url(host: str) -> str:
    return control_url(host, "MediaRenderer/RenderingControl")


def topology_url(host: str) -> str:
    return control_url(host, "ZoneGroupTopology")


def soap_response(action: str, service: str = "RenderingControl", fields: dict = None) -> str:
    arguments = "".join(f"<{name}>{escape(str(value))}</{name}>" for name, value in (fields or {}).items())
    return (
        '<?xml version="1.0"?>'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        f'<s:Body><u:{action}Response xmlns:u="urn:schemas-upnp-org:service:{service}:1">'
        f"{arguments}</u:{action}Response></s:Body></s:Envelope>"
    )


def topology_response(topology: str) -> str:
    return soap_response("GetZoneGroupState", "ZoneGroupTopology", {"ZoneGroupState": topology})


@pytest.fixture
async def http_session():
    session = aiohttp.ClientSession()
    yield session
    await session.close()


class RecordingListener(DialListener):

    def __init__(self):
        self.feedback = []
        self.settings = []
        self.alerts = []

    def set_feedback(self, action_id, value, opacity):
        self.feedback.append((action_id, value, opacity))

    def set_settings(self, action_id, settings):
        self.settings.append((action_id, settings))

    def show_alert(self, action_id, message):
        self.alerts.append((action_id, message))

    def last_settings(self, action_id):
        return next(settings for dial_id, settings in reversed(self.settings) if dial_id == action_id)

    def event_count(self):
        return len(self.feedback) + len(self.settings) + len(self.alerts)


class FakeDevice:
    """Volume and mute state of one speaker (or group) on the fake network."""

    def __init__(self, volume=30, muted=False):
        self.volume = volume
        self.muted = muted
        self.fail_reads = False
        self.fail_writes = False
        # Raised by writes instead of the usual TransportError when set
        self.write_error = None
        self.volume_writes = []
        self.mute_writes = []


class FakeSpeaker:
    """Stands in for SonosSpeaker, talking to a FakeDevice instead of the network."""

    def __init__(self, network):
        self._network = network
        self.host = None
        self.port = None
        self.single_speaker_mode = None

    def connect(self, host, port=DEFAULT_PORT, single_speaker_mode=False):
        if not host:
            raise ConfigurationError("No speaker host configured")
        self.host = host
        self.port = port
        self.single_speaker_mode = single_speaker_mode

    def is_connected(self):
        return bool(self.host)

    @property
    def device(self):
        return self._network.device(self.host)

    async def get_volume(self):
        await asyncio.sleep(0)
        if self.device.fail_reads:
            raise TransportError(f"{self.host} unreachable")
        return self.device.volume

    async def get_muted(self):
        await asyncio.sleep(0)
        if self.device.fail_reads:
            raise TransportError(f"{self.host} unreachable")
        return self.device.muted

    async def set_volume(self, volume):
        await asyncio.sleep(0)
        if self.device.write_error is not None:
            raise self.device.write_error
        if self.device.fail_writes:
            raise TransportError(f"{self.host} unreachable", status=500, body="<fault/>")
        self.device.volume_writes.append(volume)
        self.device.volume = volume

    async def set_muted(self, muted):
        await asyncio.sleep(0)
        if self.device.write_error is not None:
            raise self.device.write_error
        if self.device.fail_writes:
            raise TransportError(f"{self.host} unreachable", status=500, body="<fault/>")
        self.device.mute_writes.append(muted)
        self.device.muted = muted


class FakeNetwork:

    def __init__(self):
        self.devices = {}
        self.speakers = []

    def device(self, host):
        return self.devices.setdefault(host, FakeDevice())

    def create_speaker(self):
        speaker = FakeSpeaker(self)
        self.speakers.append(speaker)
        return speaker


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def listener():
    return RecordingListener()
