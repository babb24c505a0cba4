# config/settings.py
"""
Central configuration loader for the killfeed service

Loads all settings from environment variables (or a .env file) with sensible defaults.
"""

from decouple import config
import logging

# ===========================================
# DISCORD BOT SETTINGS
# ===========================================
TOKEN = config('TOKEN', default=None)

# Development settings - set TEST_GUILD_ID for instant command sync
TEST_GUILD_ID = config('TEST_GUILD_ID', default=None, cast=lambda x: int(x) if x else None)

# ===========================================
# DATABASE CONFIGURATION
# ===========================================
DATABASE_CONFIG = {
    'host': config('DB_HOST', default='localhost'),
    'port': config('DB_PORT', default=3306, cast=int),
    'user': config('DB_USER', default='killfeed'),
    'password': config('DB_PASSWORD', default=''),
    'database': config('DB_NAME', default='killfeed'),
}

DB_POOL_SIZE = config('DB_POOL_SIZE', default=5, cast=int)

# ===========================================
# INGESTION
# ===========================================

# Fixed delay between two cycles of the same server
POLL_INTERVAL_SECONDS = config('POLL_INTERVAL_SECONDS', default=60, cast=int)

# Identical events inside this window are emitted once
DUPLICATE_THRESHOLD_MS = config('DUPLICATE_THRESHOLD_MS', default=3000, cast=int)

# An mtime jump larger than this is a (weak) rotation signal
ROTATION_MTIME_THRESHOLD_SECONDS = config('ROTATION_MTIME_THRESHOLD_SECONDS', default=3600, cast=int)

# Upper bound for any single remote call (stat, read, write, list)
REMOTE_IO_TIMEOUT_SECONDS = config('REMOTE_IO_TIMEOUT_SECONDS', default=30, cast=float)

# Write a probe file into the log directory when the tracked log disappears
SFTP_PROBE_ENABLED = config('SFTP_PROBE_ENABLED', default=True, cast=bool)
PROBE_FILENAME = config('PROBE_FILENAME', default='log_parser_probe.txt')

SERVER_LOG_FILENAME = config('SERVER_LOG_FILENAME', default='Deadside.log')
DEATHLOG_EXTENSION = config('DEATHLOG_EXTENSION', default='.csv')

# ===========================================
# ENCRYPTION CONFIGURATION
# ===========================================
# Master key for SFTP password encryption (Fernet key or any passphrase)
ENCRYPTION_MASTER_KEY = config('ENCRYPTION_MASTER_KEY', default=None)

# ===========================================
# LOGGING CONFIGURATION
# ===========================================
LOG_LEVEL = config('LOG_LEVEL', default='INFO')

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# paramiko logs every channel open at INFO
logging.getLogger('paramiko').setLevel(logging.WARNING)
