"""CLI package for crmsync.

The main Typer app is created in app.py; importing the command modules
registers their commands and sub-apps with it.
"""

import crmsync.cli.commands_crm  # noqa: F401, E402
import crmsync.cli.commands_logs  # noqa: F401, E402
from crmsync.cli.app import app

__all__ = ["app"]
