"""CRM CLI commands.

- connect: store credentials and test the connection
- sync: refresh the tags and fields caches
- tags list / fields list: show the cached catalogs
- contact find|load|tagged: contact lookups against the live CRM
"""

from __future__ import annotations

import json
from typing import Optional

import typer
from typer import Context, Typer

from crmsync.cli.app import app, connected_engine, fail, get_engine, get_state
from crmsync.connectors.base import ConnectorError
from crmsync.crm.registry import CRMAdapterRegistry

tags_app = Typer(help="Available tags")
fields_app = Typer(help="CRM fields")
contact_app = Typer(help="Contact lookups")
app.add_typer(tags_app, name="tags")
app.add_typer(fields_app, name="fields")
app.add_typer(contact_app, name="contact")


@app.command()
def connect(
    ctx: Context,
    crm: Optional[str] = typer.Option(None, "--crm", help="CRM slug to activate"),
    url: Optional[str] = typer.Option(None, "--url", help="CRM base URL"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
    api_key: Optional[str] = typer.Option(None, "--api-key"),
    client_id: Optional[str] = typer.Option(None, "--client-id"),
    client_secret: Optional[str] = typer.Option(None, "--client-secret"),
):
    """Store credentials for a CRM and test the connection.

    Examples:
        crmsync connect --crm mautic --url https://m.example.com -u admin -p secret
        crmsync connect --crm activecampaign --url https://acct.api-us1.com --api-key KEY
    """
    state = get_state(ctx)
    settings = state.settings

    if crm is not None:
        if not CRMAdapterRegistry.is_registered(crm):
            typer.echo(
                f"❌ Unknown CRM: {crm}. Available: {', '.join(CRMAdapterRegistry.list_adapters())}",
                err=True,
            )
            raise typer.Exit(1)
        settings.set("crm", crm.lower())

    engine = get_engine(ctx)
    values = {
        "url": url,
        "username": username,
        "password": password,
        "api_key": api_key,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    values = {key: value for key, value in values.items() if value is not None}
    if values:
        settings.update_credentials(engine.adapter.slug, **values)

    typer.echo(f"🔌 Connecting to {engine.adapter.name}...")
    result = engine.connect(test=True)
    if not result:
        typer.echo(f"❌ Connection failed: {result.message}", err=True)
        raise typer.Exit(1)
    typer.echo("✅ Connected")


@app.command()
def sync(ctx: Context):
    """Refresh the available tags and CRM fields from the active CRM."""
    engine = connected_engine(ctx)
    try:
        event = engine.sync()
    except ConnectorError as e:
        fail(e)
    typer.echo(f"✅ Synced {event.tag_count} tags and {event.field_count} fields")


@tags_app.command(name="list")
def tags_list(ctx: Context):
    """List the cached available tags (tag_id -> label)."""
    tags = get_state(ctx).settings.tags()
    if not tags:
        typer.echo("No tags cached. Run 'crmsync sync' first.")
        return
    for tag in tags:
        typer.echo(f"{tag.tag_id}\t{tag.label}")


@fields_app.command(name="list")
def fields_list(ctx: Context):
    """List the cached CRM fields (crm_field -> label)."""
    fields = get_state(ctx).settings.crm_fields
    if not fields:
        typer.echo("No fields cached. Run 'crmsync sync' first.")
        return
    for key, label in fields.items():
        typer.echo(f"{key}\t{label}")


@contact_app.command(name="find")
def contact_find(
    ctx: Context,
    email: str = typer.Argument(..., help="Email address to look up"),
):
    """Print the contact ID for an email address."""
    engine = connected_engine(ctx)
    try:
        contact_id = engine.adapter.get_contact_id(email)
    except ConnectorError as e:
        fail(e)
    if contact_id is None:
        typer.echo(f"No contact found for {email}")
        raise typer.Exit(1)
    typer.echo(str(contact_id))


@contact_app.command(name="load")
def contact_load(
    ctx: Context,
    contact_id: str = typer.Argument(..., help="CRM contact ID"),
):
    """Print a contact's active field values and tags as JSON."""
    engine = connected_engine(ctx)
    try:
        values = engine.adapter.load_contact(contact_id)
        tags = engine.adapter.get_tags(contact_id)
    except ConnectorError as e:
        fail(e)
    typer.echo(json.dumps({"fields": values, "tags": tags}, indent=2, default=str))


@contact_app.command(name="tagged")
def contact_tagged(
    ctx: Context,
    tag_id: str = typer.Argument(..., help="Tag ID"),
):
    """List the IDs of every contact carrying a tag."""
    engine = connected_engine(ctx)
    try:
        contact_ids = engine.adapter.load_contacts(tag_id)
    except ConnectorError as e:
        fail(e)
    for contact_id in contact_ids:
        typer.echo(str(contact_id))
    typer.echo(f"📊 {len(contact_ids)} contacts", err=True)
