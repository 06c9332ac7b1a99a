"""
dotvault -- portable developer-machine secrets.

SSH keys, cloud credentials, git identity and environment secrets,
restored from and pushed to the vault you already use.
"""

import os

__version__ = "0.1.0"

DOTVAULT_HOME = os.environ.get("DOTVAULT_HOME", "~/.dotvault")
