"""CLI app setup and common utilities.

This module creates the main Typer app and the shared state that command
modules use to reach the settings store, the active adapter, the sync
engine and the activity log.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import httpx
import typer
from typer import Context, Typer

from crmsync.activity import ActivityLogger, LogStorage
from crmsync.config import config
from crmsync.connectors.base import ConnectorError
from crmsync.crm.adapters.base import BaseCRMAdapter
from crmsync.crm.registry import CRMAdapterFactory, CRMAdapterRegistryError
from crmsync.events import EventBus
from crmsync.settings import SettingsStore
from crmsync.sync import SyncEngine

# Initialize Typer app
app = Typer(
    name="crmsync",
    help="Contact sync between local users and a CRM (Salesforce, Mautic, ActiveCampaign).",
)


# =============================================================================
# Global Context Object
# =============================================================================


class CLIState:
    """Shared state object for CLI commands.

    Paths are resolved by the app callback; the settings store, adapter and
    engine are built on first use.
    """

    def __init__(
        self,
        settings_path: Optional[Path] = None,
        log_db_path: Optional[Path] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings_path = settings_path
        self.log_db_path = log_db_path
        self.transport = transport
        self.bus = EventBus()
        self._settings: Optional[SettingsStore] = None
        self._engine: Optional[SyncEngine] = None

    @property
    def settings(self) -> SettingsStore:
        if self._settings is None:
            self._settings = SettingsStore.load(self.settings_path or config.settings_path)
        return self._settings

    def activity_logger(self) -> ActivityLogger:
        storage = LogStorage(self.log_db_path or config.log_db_path, cap=config.log_cap)
        return ActivityLogger(self.settings, storage, bus=self.bus)

    def adapter(self) -> BaseCRMAdapter:
        adapter = CRMAdapterFactory.from_settings(self.settings, transport=self.transport)
        adapter.policy = replace(
            adapter.policy,
            connect_timeout=config.http.timeout_s,
            user_agent=config.http.user_agent,
        )
        return adapter

    def engine(self) -> SyncEngine:
        if self._engine is None:
            self._engine = SyncEngine(
                adapter=self.adapter(),
                settings=self.settings,
                bus=self.bus,
                activity_logger=self.activity_logger(),
            )
        return self._engine


def get_state(ctx: Context) -> CLIState:
    """Get the CLI state from the Typer context."""
    if ctx.obj is None:
        # This shouldn't happen in normal CLI usage since init_app always sets it
        raise RuntimeError("CLI state not initialized - this is a bug")
    return ctx.obj


def get_engine(ctx: Context) -> SyncEngine:
    """Build the engine for the active CRM, exiting on an unknown slug."""
    try:
        return get_state(ctx).engine()
    except CRMAdapterRegistryError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)


def connected_engine(ctx: Context) -> SyncEngine:
    """Engine connected with the stored credentials, or exit 1."""
    engine = get_engine(ctx)
    result = engine.connect(test=False)
    if not result:
        typer.echo(f"❌ Connection failed: {result.message}", err=True)
        raise typer.Exit(1)
    return engine


def fail(error: ConnectorError) -> None:
    """Echo a connector error and exit 1."""
    typer.echo(f"❌ Error: {error}", err=True)
    raise typer.Exit(1)


@app.callback()
def init_app(
    ctx: Context,
    settings_path: Optional[Path] = typer.Option(
        None,
        "--settings",
        "-s",
        help="Settings JSON file (default: CRMSYNC_SETTINGS_PATH)",
    ),
    log_db: Optional[Path] = typer.Option(
        None,
        "--log-db",
        help="Activity log database (default: CRMSYNC_LOG_DB_PATH)",
    ),
):
    """Sync local users with the active CRM."""
    logging.basicConfig(level=config.log_level.upper())

    state = ctx.ensure_object(CLIState)
    if settings_path is not None:
        state.settings_path = settings_path
    if log_db is not None:
        state.log_db_path = log_db
    if state.settings_path is None or state.log_db_path is None:
        config.ensure_directories()
