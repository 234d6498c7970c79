"""
CLI runner module.

Provides commands:
- connect / callback: Grant read-only mailbox access
- fetch: Stage new transactions for review
- pending / edit / delete / confirm: Review workflow
- revoke: Disconnect and purge unconfirmed data
- sync-all: Scheduled fetch for every connected user
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
