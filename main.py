"""
Main command-line interface for pysonosdial.

This script provides a CLI to inspect and control a Sonos speaker and its zone group.
"""

import argparse
import asyncio
import logging

import aiohttp

from pysonosdial.exceptions import SonosDialError
from pysonosdial.settings import DEFAULT_PORT
from pysonosdial.speaker import SonosSpeaker


def _connect(http_session: aiohttp.ClientSession, hostname: str, port: int, single: bool) -> SonosSpeaker:
    mode = "single speaker mode" if single else "group mode"
    print(f"Connecting to Sonos speaker at {hostname}:{port} ({mode})...")
    speaker = SonosSpeaker(http_session)
    speaker.connect(hostname, port, single)
    return speaker


async def show_status(hostname: str, port: int, single: bool):
    """Show the speaker's group, volume and mute state."""
    async with aiohttp.ClientSession() as http_session:
        speaker = _connect(http_session, hostname, port, single)

        coordinator = await speaker.get_group_coordinator()
        members = await speaker.get_group_members()
        groups = await speaker.get_available_groups()
        group = next((g for g in groups if hostname in g.members), None)
        volume, muted = await asyncio.gather(speaker.get_volume(), speaker.get_muted())

        print("-" * 60)
        print(f"{'Group:':14s} {group.name if group else 'standalone'}")
        print(f"{'Coordinator:':14s} {coordinator}")
        print(f"{'Members:':14s} {', '.join(members) if members else hostname}")
        print(f"{'Volume:':14s} {volume}")
        print(f"{'Muted:':14s} {'yes' if muted else 'no'}")
        print("-" * 60)


async def show_groups(hostname: str, port: int, single: bool):
    """List every zone group known to the speaker."""
    async with aiohttp.ClientSession() as http_session:
        speaker = _connect(http_session, hostname, port, single)
        groups = await speaker.get_available_groups()

        print("\nZone Groups:")
        print("-" * 100)
        for group in groups:
            group_label = f"{group.name}:"
            print(f"{group_label:30s} Coordinator: {group.coordinator:16s} | Members: {', '.join(group.members)}")
        print("-" * 100)


async def set_volume(hostname: str, port: int, single: bool, level: int):
    """Set the volume for the speaker or its whole group."""
    async with aiohttp.ClientSession() as http_session:
        speaker = _connect(http_session, hostname, port, single)
        print(f"Setting volume to {level}...")
        await speaker.set_volume(level)
        print("Done")


async def set_mute(hostname: str, port: int, single: bool, state: str):
    """Mute, unmute or toggle the speaker or its whole group."""
    async with aiohttp.ClientSession() as http_session:
        speaker = _connect(http_session, hostname, port, single)
        if state == "toggle":
            muted = not await speaker.get_muted()
        else:
            muted = state == "on"
        print(f"{'Muting' if muted else 'Unmuting'}...")
        await speaker.set_muted(muted)
        print("Done")


def main():
    parser = argparse.ArgumentParser(description="Control a Sonos speaker and its zone group")
    parser.add_argument("--host", required=True, help="Sonos speaker hostname or IP")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Sonos UPnP port (default: {DEFAULT_PORT})")
    parser.add_argument("--single", action="store_true", help="Only control this speaker, not its whole group")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Status command
    subparsers.add_parser("status", help="Show group, volume and mute state")

    # Groups command
    subparsers.add_parser("groups", help="List all zone groups")

    # Volume command
    volume_parser = subparsers.add_parser("volume", help="Set volume level")
    volume_parser.add_argument("level", type=int, help="Volume level (0-100)")

    # Mute command
    mute_parser = subparsers.add_parser("mute", help="Set mute state")
    mute_parser.add_argument("state", choices=["on", "off", "toggle"], help="Mute state")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        if args.command == "status":
            asyncio.run(show_status(args.host, args.port, args.single))
        elif args.command == "groups":
            asyncio.run(show_groups(args.host, args.port, args.single))
        elif args.command == "volume":
            asyncio.run(set_volume(args.host, args.port, args.single, args.level))
        elif args.command == "mute":
            asyncio.run(set_mute(args.host, args.port, args.single, args.state))
        else:
            parser.print_help()
    except SonosDialError as err:
        print(f"Error: {err}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
