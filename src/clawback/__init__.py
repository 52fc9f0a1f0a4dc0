"""
Clawback — backup and disaster recovery for agent workspaces.

Snapshots an agent's workspace into one portable, checksummed,
secret-redacted archive and brings it back on another machine
with its paths rewritten for the new home.
"""

import os

__version__ = "0.1.0"
__author__ = "clawback contributors"

FORMAT_VERSION = "1.0"
ARCHIVE_SUFFIX = ".clawback"

CLAWBACK_CONFIG = os.environ.get("CLAWBACK_CONFIG", "~/.config/clawback/config.yaml")
