"""pgvault - unattended PostgreSQL backups."""

__version__ = "2.4.0"
