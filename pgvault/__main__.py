"""Allow running as ``python -m pgvault``."""

from pgvault.cli import main

main()
