# services/log_embed_builder.py
"""
Discord embed builders for Deadside events.
Kill feed entries (kills, deaths, suicides) and server log entries (joins,
leaves, world events, restarts).
"""

import discord
from datetime import datetime
from typing import Optional
from killfeed.services.events import (
    AirdropEvent, DeathEvent, GameEvent, HeliCrashEvent, JoinEvent, KillEvent,
    LeaveEvent, MissionEvent, ServerRestartEvent, SuicideEvent, TraderEvent
)
import logging

logger = logging.getLogger(__name__)

CAUSE_LABELS = {
    'falling': 'Fell to their death',
    'bleeding': 'Bled out',
    'drowning': 'Drowned',
    'starvation': 'Starved',
    'suicide': 'Took their own life',
    'suicide_by_relocation': 'Relocated (suicide)',
}


def describe_cause(cause: str) -> str:
    return CAUSE_LABELS.get(cause.strip().lower(), cause.replace('_', ' ').capitalize())


def format_timestamp(timestamp: Optional[datetime]) -> str:
    """Game-style timestamp without milliseconds."""
    if timestamp is None:
        return "unknown"
    return timestamp.strftime("%Y.%m.%d-%H.%M.%S")


def build_kill_embed(event: KillEvent, server_name: str) -> discord.Embed:
    """
    Build embed for a player kill.

    Format:
        💀 [Server Name] - Kill
        Alice killed Bob
        Weapon: AK47 | Distance: 52 m
    """
    embed = discord.Embed(
        title=f"💀 {server_name} - Kill",
        description=f"**{event.killer}** killed **{event.victim}**",
        color=discord.Color.red(),
        timestamp=event.timestamp
    )
    embed.add_field(name="Weapon", value=event.weapon or "Unknown", inline=True)
    embed.add_field(name="Distance", value=f"{event.distance:.0f} m", inline=True)
    if event.killer_id or event.victim_id:
        embed.set_footer(text=f"Killer ID: {event.killer_id or '-'} | Victim ID: {event.victim_id or '-'}")
    return embed


def build_death_embed(event: DeathEvent, server_name: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"☠️ {server_name} - Death",
        description=f"**{event.player}**: {describe_cause(event.cause)}",
        color=discord.Color.dark_red(),
        timestamp=event.timestamp
    )
    return embed


def build_suicide_embed(event: SuicideEvent, server_name: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"🪦 {server_name} - Suicide",
        description=f"**{event.player}**: {describe_cause(event.cause)}",
        color=discord.Color.dark_grey(),
        timestamp=event.timestamp
    )
    return embed


def build_player_connection_embed(event: GameEvent, server_name: str) -> discord.Embed:
    """Join and leave share one layout."""
    joined = isinstance(event, JoinEvent)
    embed = discord.Embed(
        title=f"{'🟢' if joined else '🔴'} {server_name} - Player {'Joined' if joined else 'Left'}",
        color=discord.Color.green() if joined else discord.Color.orange()
    )
    embed.add_field(name="Player", value=event.player, inline=False)
    embed.add_field(name="Timestamp", value=format_timestamp(event.timestamp), inline=False)
    return embed


def build_world_event_embed(event: GameEvent, server_name: str) -> discord.Embed:
    """Airdrops, helicopter crashes, trader events and missions."""
    if isinstance(event, AirdropEvent):
        title, detail = "📦 Airdrop", f"Status: **{event.status}**"
    elif isinstance(event, HeliCrashEvent):
        title, detail = "🚁 Helicopter Crash", f"Position: `{event.position}`"
    elif isinstance(event, TraderEvent):
        title, detail = "🛒 Trader Event", f"Position: `{event.position}`"
    elif isinstance(event, MissionEvent):
        title, detail = "🎯 Mission", f"**{event.name}** is now **{event.status}**"
    else:
        raise ValueError(f"Not a world event: {type(event).__name__}")

    embed = discord.Embed(
        title=f"{title} - {server_name}",
        description=detail,
        color=discord.Color.blue(),
        timestamp=event.timestamp
    )
    return embed


def build_restart_embed(event: ServerRestartEvent, server_name: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"🔄 {server_name} - Server Restart",
        description="The server is restarting.",
        color=discord.Color.light_grey(),
        timestamp=event.timestamp
    )
    return embed


def build_event_embed(event: GameEvent, server_name: str) -> discord.Embed:
    """Pick the builder for an event."""
    if isinstance(event, KillEvent):
        return build_kill_embed(event, server_name)
    if isinstance(event, DeathEvent):
        return build_death_embed(event, server_name)
    if isinstance(event, SuicideEvent):
        return build_suicide_embed(event, server_name)
    if isinstance(event, (JoinEvent, LeaveEvent)):
        return build_player_connection_embed(event, server_name)
    if isinstance(event, ServerRestartEvent):
        return build_restart_embed(event, server_name)
    return build_world_event_embed(event, server_name)
