# bot.py
"""Bot entry point: schema, cog loading, command sync."""

import asyncio
import discord
from discord.ext import commands
from killfeed.config.settings import TOKEN, TEST_GUILD_ID
from killfeed.database.connection import check_connection, close_pool
from killfeed.database.schema import create_tables
import logging

logger = logging.getLogger(__name__)

EXTENSIONS = (
    'killfeed.cogs.killfeed',
)


class KillfeedBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

    async def setup_hook(self):
        if not await asyncio.to_thread(check_connection):
            raise RuntimeError("MySQL is unreachable, check the DB_* settings")
        await asyncio.to_thread(create_tables)

        for extension in EXTENSIONS:
            await self.load_extension(extension)
            logger.info(f"Loaded extension {extension}")

        # Guild sync is instant; global sync can take up to an hour
        if TEST_GUILD_ID:
            guild = discord.Object(id=TEST_GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.info(f"Synced {len(synced)} command(s)")

    async def on_ready(self):
        logger.info(f"Logged in as {self.user.name} - {self.user.id}")

    async def close(self):
        await super().close()
        close_pool()


def main():
    if not TOKEN:
        raise SystemExit("TOKEN is not set")
    KillfeedBot().run(TOKEN, log_handler=None)


if __name__ == '__main__':
    main()
