"""
Service layer for media retrieval.

This module contains the retrieval engine, independent of the database and
Django views. It is used by:
- The bot runner (management/commands/runbot.py)
- The one-shot cleanup command (management/commands/cleanup_downloads.py)
"""
