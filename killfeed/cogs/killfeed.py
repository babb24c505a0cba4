# cogs/killfeed.py
"""
Killfeed commands and monitor hosting.

Commands for Deadside servers monitored over SFTP:
- Add / remove a game server
- View monitoring status
- Poll now, replay history
- Leaderboards
"""

import asyncio
import discord
from discord import app_commands
from discord.ext import commands, tasks
from killfeed.database.queries import GameServerQueries
from killfeed.database.store import MySQLTenantStore, PersistenceError
from killfeed.services.credentials import CredentialError, get_vault
from killfeed.services.events import GameEvent
from killfeed.services.log_embed_builder import build_event_embed
from killfeed.services.log_monitor import ServerConfig, log_monitor_manager
from killfeed.services.maintenance import (
    cleanup_server_data, sanitize_all_player_stats, top_players
)
from killfeed.services.sftp_logs import SFTPFileAccessor
from killfeed.services.tenant import InvalidTenantKey, TenantKey, resolve_tenant
import logging
from typing import Literal, Optional

logger = logging.getLogger(__name__)


class DiscordNotifier:
    """Posts event embeds for one server. dispatch() never waits for Discord."""

    def __init__(self, bot: commands.Bot, server_name: str):
        self.bot = bot
        self.server_name = server_name
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, event: GameEvent, destination_channel_id: int) -> None:
        channel = self.bot.get_channel(destination_channel_id)
        if channel is None:
            logger.warning(f"[{event.tenant}] Channel {destination_channel_id} not found, dropping event")
            return
        embed = build_event_embed(event, self.server_name)
        task = asyncio.get_running_loop().create_task(self._send(channel, embed))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, channel, embed: discord.Embed) -> None:
        try:
            await channel.send(embed=embed)
        except discord.Forbidden:
            logger.warning(f"Cannot send to channel {channel.id} - missing permissions")
        except discord.HTTPException as e:
            logger.error(f"Error sending to channel {channel.id}: {e}")


class KillfeedCommands(commands.GroupCog, name="killfeed"):
    """Deadside kill feed commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = MySQLTenantStore()
        log_monitor_manager.store = self.store
        self._startup_task: Optional[asyncio.Task] = None
        super().__init__()

    async def cog_load(self):
        """Called when the cog is loaded."""
        self.sanitize_stats.start()
        self._startup_task = asyncio.create_task(self._start_enabled_servers())

    async def cog_unload(self):
        """Called when the cog is unloaded."""
        self.sanitize_stats.cancel()
        if self._startup_task is not None:
            self._startup_task.cancel()
        await log_monitor_manager.stop_all()

    async def _start_enabled_servers(self):
        await self.bot.wait_until_ready()
        try:
            rows = await asyncio.to_thread(GameServerQueries.get_enabled_servers)
        except Exception as e:
            logger.error(f"Could not load game servers: {e}", exc_info=True)
            return

        started = 0
        for row in rows:
            try:
                config = ServerConfig.from_row(row, get_vault())
            except (CredentialError, InvalidTenantKey) as e:
                logger.error(f"Skipping server {row.get('guild_id')}/{row.get('server_id')}: {e}")
                continue
            await self._start_monitor(config)
            started += 1
        logger.info(f"Started {started} log monitor(s)")

    async def _start_monitor(self, config: ServerConfig):
        await log_monitor_manager.remove_monitor(config.tenant)
        log_monitor_manager.create_monitor(config, DiscordNotifier(self.bot, config.server_name))
        await log_monitor_manager.start_monitor(config.tenant)

    def _tenant(self, interaction: discord.Interaction, server_id: str) -> TenantKey:
        return resolve_tenant(interaction.guild_id, server_id)

    # ==========================================
    # SERVER CONFIGURATION
    # ==========================================

    @app_commands.command(name="add", description="Add a Deadside server to the kill feed")
    @app_commands.guild_only()
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.describe(
        server_id="Short unique id for this server (e.g. eu1)",
        name="Display name",
        host="SFTP server hostname or IP",
        username="SFTP username",
        password="SFTP password",
        log_directory="Directory containing Deadside.log",
        killfeed_channel="Channel for kills, deaths and suicides",
        log_channel="Channel for joins, leaves and world events",
        deathlog_directory="Directory containing the death log CSVs",
        port="SFTP port (default: 22)"
    )
    async def add_server(
        self,
        interaction: discord.Interaction,
        server_id: str,
        name: str,
        host: str,
        username: str,
        password: str,
        log_directory: str,
        killfeed_channel: discord.TextChannel,
        log_channel: Optional[discord.TextChannel] = None,
        deathlog_directory: Optional[str] = None,
        port: int = 22
    ):
        """Save a server's SFTP settings and start monitoring it."""
        await interaction.response.defer(ephemeral=True)

        try:
            tenant = self._tenant(interaction, server_id)

            accessor = SFTPFileAccessor(host, port, username, password, server_name=name)
            success, message = await asyncio.to_thread(accessor.test_connection)
            await asyncio.to_thread(accessor.close)
            if not success:
                await interaction.followup.send(
                    f"SFTP connection failed: {message}\nPlease check your credentials.",
                    ephemeral=True
                )
                return

            vault = get_vault()
            salt = vault.generate_salt()
            GameServerQueries.add_server(
                tenant, name, host, port, username,
                password_encrypted=vault.encrypt(password, tenant, salt),
                encryption_salt=salt,
                log_directory=log_directory,
                deathlog_directory=deathlog_directory,
                log_channel_id=log_channel.id if log_channel else None,
                killfeed_channel_id=killfeed_channel.id
            )

            config = ServerConfig(
                tenant=tenant, server_name=name, host=host, port=port,
                username=username, password=password, log_directory=log_directory,
                deathlog_directory=deathlog_directory,
                log_channel_id=log_channel.id if log_channel else None,
                killfeed_channel_id=killfeed_channel.id
            )
            await self._start_monitor(config)

            embed = discord.Embed(
                title="Server Added",
                description=f"`{name}` is now monitored. The first import runs silently.",
                color=discord.Color.green()
            )
            embed.add_field(name="Host", value=f"`{host}:{port}`", inline=True)
            embed.add_field(name="Kill Feed", value=killfeed_channel.mention, inline=True)
            if log_channel:
                embed.add_field(name="Server Log", value=log_channel.mention, inline=True)
            await interaction.followup.send(embed=embed, ephemeral=True)

        except InvalidTenantKey as e:
            await interaction.followup.send(f"Invalid server id: {e}", ephemeral=True)
        except Exception as e:
            logger.error(f"Error adding server: {e}", exc_info=True)
            await interaction.followup.send(f"An error occurred: {e}", ephemeral=True)

    @app_commands.command(name="remove", description="Stop monitoring a server and delete its data")
    @app_commands.guild_only()
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.describe(server_id="Server to remove")
    async def remove_server(self, interaction: discord.Interaction, server_id: str):
        """Stop the monitor, drop stats/cursors/kill records, remove the config."""
        await interaction.response.defer(ephemeral=True)

        try:
            tenant = self._tenant(interaction, server_id)
            await log_monitor_manager.remove_monitor(tenant)
            counts = await asyncio.to_thread(cleanup_server_data, self.store, tenant)
            removed = GameServerQueries.remove_server(tenant)

            if not removed and not any(counts.values()):
                await interaction.followup.send(f"Server `{server_id}` not found.", ephemeral=True)
                return

            await interaction.followup.send(
                f"Removed `{server_id}` ({counts.get('player_stats', 0)} player stats, "
                f"{counts.get('kill_records', 0)} kill records deleted).",
                ephemeral=True
            )

        except (InvalidTenantKey, PersistenceError) as e:
            await interaction.followup.send(f"Could not remove server: {e}", ephemeral=True)
        except Exception as e:
            logger.error(f"Error removing server: {e}", exc_info=True)
            await interaction.followup.send(f"An error occurred: {e}", ephemeral=True)

    # ==========================================
    # MONITORING CONTROL
    # ==========================================

    @app_commands.command(name="status", description="Show kill feed monitoring status")
    @app_commands.guild_only()
    @app_commands.checks.has_permissions(administrator=True)
    async def monitoring_status(self, interaction: discord.Interaction):
        """Show every server's monitor state and its last cycle."""
        try:
            servers = GameServerQueries.get_guild_servers(interaction.guild_id)

            embed = discord.Embed(
                title="Kill Feed Status",
                color=discord.Color.blue()
            )

            if not servers:
                embed.description = "No servers configured. Use `/killfeed add` first."

            for row in servers[:25]:
                tenant = TenantKey.from_row(row)
                monitor = log_monitor_manager.get_monitor(tenant)
                if monitor is None:
                    embed.add_field(name=row['server_name'], value="🔴 Not monitored", inline=False)
                    continue

                status = monitor.status()
                lines = [
                    f"{'🟢 Running' if status['running'] else '🔴 Stopped'} ({status['state']})",
                    f"Cycles: {status['cycles_completed']}",
                ]
                for report in status['reports']:
                    lines.append(
                        f"`{report.file_name}`: offset {report.committed_offset if report.committed_offset is not None else '-'}"
                        + (" (missing)" if report.missing else "")
                        + (" (rotated)" if report.rotated else "")
                    )
                if status['last_error']:
                    lines.append(f"⚠️ {status['last_error'][:200]}")
                embed.add_field(name=row['server_name'], value="\n".join(lines), inline=False)

            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error getting status: {e}", exc_info=True)
            await interaction.response.send_message(f"An error occurred: {e}", ephemeral=True)

    @app_commands.command(name="poll", description="Poll a server's logs now")
    @app_commands.guild_only()
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.describe(server_id="Server to poll")
    async def poll_now(self, interaction: discord.Interaction, server_id: str):
        """Run one cycle immediately (waits for an in-flight cycle first)."""
        await interaction.response.defer(ephemeral=True)

        try:
            monitor = log_monitor_manager.get_monitor(self._tenant(interaction, server_id))
            if monitor is None:
                await interaction.followup.send(f"`{server_id}` is not monitored.", ephemeral=True)
                return

            reports = await monitor.run_cycle()
            if monitor.last_error:
                await interaction.followup.send(f"Cycle failed: {monitor.last_error}", ephemeral=True)
                return

            summary = "\n".join(
                f"`{r.file_name}`: {r.lines_read} line(s), {r.events} event(s), {r.suppressed} suppressed"
                for r in reports
            ) or "Nothing to read."
            await interaction.followup.send(summary, ephemeral=True)

        except InvalidTenantKey as e:
            await interaction.followup.send(f"Invalid server id: {e}", ephemeral=True)
        except Exception as e:
            logger.error(f"Error polling server: {e}", exc_info=True)
            await interaction.followup.send(f"An error occurred: {e}", ephemeral=True)

    @app_commands.command(name="replay", description="Rebuild a server's stats from its current logs")
    @app_commands.guild_only()
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.describe(server_id="Server to replay")
    async def replay(self, interaction: discord.Interaction, server_id: str):
        """Wipe stats, rewind cursors, re-read without posting to the feed."""
        await interaction.response.defer(ephemeral=True)

        try:
            tenant = self._tenant(interaction, server_id)
            monitor = log_monitor_manager.get_monitor(tenant)
            if monitor is None:
                await interaction.followup.send(f"`{server_id}` is not monitored.", ephemeral=True)
                return

            await monitor.replay()
            await interaction.followup.send(
                f"Stats for `{server_id}` reset. The next cycle replays the logs silently.",
                ephemeral=True
            )

        except (InvalidTenantKey, PersistenceError) as e:
            await interaction.followup.send(f"Could not start replay: {e}", ephemeral=True)
        except Exception as e:
            logger.error(f"Error starting replay: {e}", exc_info=True)
            await interaction.followup.send(f"An error occurred: {e}", ephemeral=True)

    # ==========================================
    # LEADERBOARD
    # ==========================================

    @app_commands.command(name="leaderboard", description="Show the top players of a server")
    @app_commands.guild_only()
    @app_commands.describe(server_id="Server", stat="Stat to rank by")
    async def leaderboard(
        self,
        interaction: discord.Interaction,
        server_id: str,
        stat: Literal["kills", "deaths", "suicides", "longest_kill_streak", "longest_kill_distance"] = "kills"
    ):
        """Top 10 players for one stat."""
        try:
            stats = await asyncio.to_thread(
                top_players, self.store, self._tenant(interaction, server_id), stat, 10
            )

            embed = discord.Embed(
                title=f"🏆 {server_id} - Top {stat.replace('_', ' ').title()}",
                color=discord.Color.gold()
            )
            if not stats:
                embed.description = "No stats recorded yet."
            else:
                embed.description = "\n".join(
                    f"**{i}.** {s.player_id} - {getattr(s, stat):g} (K/D {s.kd_ratio})"
                    for i, s in enumerate(stats, start=1)
                )
            await interaction.response.send_message(embed=embed)

        except (InvalidTenantKey, PersistenceError) as e:
            await interaction.response.send_message(f"Could not load leaderboard: {e}", ephemeral=True)
        except Exception as e:
            logger.error(f"Error building leaderboard: {e}", exc_info=True)
            await interaction.response.send_message(f"An error occurred: {e}", ephemeral=True)

    # ==========================================
    # AUTOCOMPLETE
    # ==========================================

    @remove_server.autocomplete('server_id')
    @poll_now.autocomplete('server_id')
    @replay.autocomplete('server_id')
    @leaderboard.autocomplete('server_id')
    async def server_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str
    ) -> list[app_commands.Choice[str]]:
        """Autocomplete for this guild's server ids."""
        try:
            servers = GameServerQueries.get_guild_servers(interaction.guild_id)
        except Exception as e:
            logger.debug(f"Server autocomplete failed: {e}")
            return []
        return [
            app_commands.Choice(name=f"{s['server_name']} ({s['server_id']})", value=s['server_id'])
            for s in servers
            if current.lower() in s['server_id'].lower() or current.lower() in s['server_name'].lower()
        ][:25]

    async def cog_app_command_error(self, interaction: discord.Interaction,
                                    error: app_commands.AppCommandError):
        if isinstance(error, app_commands.MissingPermissions):
            message = "You need administrator permission to use this command."
        else:
            logger.error(f"Command error: {error}", exc_info=error)
            message = "An unexpected error occurred."
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # ==========================================
    # MAINTENANCE
    # ==========================================

    @tasks.loop(hours=24)
    async def sanitize_stats(self):
        """Daily pass clamping any negative counters, one tenant at a time."""
        try:
            results = await asyncio.to_thread(sanitize_all_player_stats, self.store)
        except PersistenceError as e:
            logger.error(f"Daily stat sanitize skipped: {e}")
            return
        fixed = sum(r for r in results.values() if isinstance(r, int))
        logger.info(f"Daily stat sanitize done for {len(results)} server(s), {fixed} row(s) fixed")

    @sanitize_stats.before_loop
    async def before_sanitize_stats(self):
        """Wait for bot to be ready before starting loop."""
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot):
    """Load the KillfeedCommands cog."""
    await bot.add_cog(KillfeedCommands(bot))
