"""CLI tools for portal administration."""

import asyncio

import click
import httpx

from portal.core.config import settings
from portal.db.enums import Role
from portal.db.session import SessionLocal


@click.group()
def cli():
    """Agency portal CLI tools."""
    pass


@cli.command()
def refresh_highlevel_token():
    """
    Force a refresh of the stored HighLevel OAuth token.

    Example:
        portal-cli refresh-highlevel-token
    """
    from portal.services.highlevel_oauth_service import build_token_provider, load_tokens

    if not settings.HIGHLEVEL_CLIENT_ID or not settings.HIGHLEVEL_CLIENT_SECRET:
        click.echo("❌ Missing HIGHLEVEL_CLIENT_ID or HIGHLEVEL_CLIENT_SECRET")
        raise SystemExit(1)

    db = SessionLocal()
    try:
        tokens = load_tokens(db, settings.HIGHLEVEL_LOCATION_ID)
    finally:
        db.close()

    if not tokens:
        click.echo("❌ No OAuth token found in database")
        raise SystemExit(1)

    click.echo(f"Location ID: {settings.HIGHLEVEL_LOCATION_ID}")
    click.echo(f"Current expiry: {tokens.expires_at.isoformat()}")
    click.echo(f"Expiring soon: {tokens.expires_soon()}")

    provider = build_token_provider(SessionLocal)
    refreshed = asyncio.run(provider.refresh(tokens.refresh_token))
    if not refreshed:
        click.echo("❌ Token refresh failed (see logs)")
        raise SystemExit(1)

    click.echo("✓ Token refreshed")
    click.echo(f"  New expiry: {refreshed.expires_at.isoformat()}")


@cli.command()
@click.option("--email", default=None, help="Contact email to look up")
@click.option("--contact-id", default=None, help="HighLevel contact id (skips the email search)")
def debug_highlevel(email: str | None, contact_id: str | None):
    """
    Check HighLevel configuration, contact lookup, and message access.

    Example:
        portal-cli debug-highlevel --email "owner@client.com"
        portal-cli debug-highlevel --contact-id "abc123"
    """
    from portal.services.crm_bridge import get_default_highlevel_client, normalize_highlevel_message
    from portal.services.highlevel_client import HighLevelAPIError

    client = get_default_highlevel_client()
    click.echo("1. Configuration")
    click.echo(f"   HIGHLEVEL_API_KEY: {'set' if settings.HIGHLEVEL_API_KEY else 'NOT SET'}")
    click.echo(f"   HIGHLEVEL_LOCATION_ID: {settings.HIGHLEVEL_LOCATION_ID or 'NOT SET'}")
    if not client.is_configured():
        click.echo("❌ HighLevel is not configured")
        raise SystemExit(1)

    async def _run() -> None:
        has_oauth = await client.has_oauth()
        click.echo(f"2. OAuth (conversations API): {'available' if has_oauth else 'not available'}")
        if contact_id:
            click.echo(f"3. Fetching contact {contact_id}")
            contact = await client.get_contact_by_id(contact_id)
        elif email:
            click.echo(f"3. Looking up contact {email}")
            contact = await client.get_contact_by_email(email)
        else:
            return
        if not contact:
            click.echo("   No contact found")
            return
        click.echo(f"   ✓ Contact {contact.get('id')}")

        messages = await client.get_all_messages_for_contact(contact["id"], limit=10)
        click.echo(f"4. {len(messages)} recent messages")
        for message in messages:
            item = normalize_highlevel_message(message)
            sent = item.sent_at.isoformat() if item.sent_at else "-"
            click.echo(f"   {sent}  {item.type:<16} {item.title}")

    try:
        asyncio.run(_run())
    except (HighLevelAPIError, httpx.HTTPError) as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)


@cli.command()
@click.option("--user-id", required=True, help="Auth provider user id (token subject)")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.ADMIN.value,
    show_default=True,
)
@click.option("--client-id", default=None, help="Client UUID (client role only)")
def mint_session_token(user_id: str, role: str, client_id: str | None):
    """
    Print a signed session token for local testing.

    Example:
        portal-cli mint-session-token --user-id u_123 --role client --client-id <uuid>
    """
    from portal.core.security import create_session_token
    from portal.utils.validation import parse_client_id

    parsed_client_id = None
    if client_id:
        parsed_client_id = parse_client_id(client_id)
        if parsed_client_id is None:
            click.echo("❌ Invalid client ID format")
            raise SystemExit(1)
    if role == Role.CLIENT.value and parsed_client_id is None:
        click.echo("❌ --client-id is required for the client role")
        raise SystemExit(1)

    click.echo(create_session_token(user_id, role, parsed_client_id))


if __name__ == "__main__":
    cli()
