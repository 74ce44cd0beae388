"""
WhatsApp CRM CLI

Command-line interface for CRM administration.

Commands:
- create-org: Register an organization and its WhatsApp number
- add-agent: Add an agent to an organization
- set-agent-status: Change an agent's availability
- list-conversations: List conversations for an organization
- assign-pending: Assign waiting conversations to available agents
"""

from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from basecore.logging import setup_logging
from basecore.settings import get_settings

from whatsapp_crm.persistence.models import (
    ActivityType,
    Agent,
    AgentRole,
    AgentStatus,
    ConversationStatus,
    Organization,
    Queue,
)
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.routing.assignment import AgentAssignmentEngine
from whatsapp_crm.routing.tenant_resolver import encrypt_access_token
from whatsapp_crm.service.audit import AuditTrail

app = typer.Typer(
    name="whatsapp-crm",
    help="WhatsApp CRM administration CLI",
)

console = Console()


@app.callback()
def main():
    setup_logging()


def get_db():
    """Get database session."""
    from basecore.db import get_sessionmaker
    return get_sessionmaker()()


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


def parse_choice(value: str, enum_cls, label: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        choices = ", ".join(e.value for e in enum_cls)
        rprint(f"[red]Invalid {label}: {value} (expected one of: {choices})[/red]")
        raise typer.Exit(1)


@app.command()
def create_org(
    name: str = typer.Argument(..., help="Organization name"),
    phone_number_id: Optional[str] = typer.Option(None, help="WhatsApp phone number ID (Meta)"),
    waba_id: Optional[str] = typer.Option(None, help="WhatsApp Business Account ID (Meta)"),
    access_token: Optional[str] = typer.Option(None, help="Access token (will be encrypted)"),
    auto_reply: Optional[str] = typer.Option(None, help="Auto-reply sent when a conversation opens"),
    timezone: Optional[str] = typer.Option(None, help="IANA timezone for protocol numbers"),
):
    """
    Register an organization.

    The phone_number_id is used to route incoming webhooks to the organization.
    """
    settings = get_settings()
    db = get_db()

    try:
        repo = CRMRepository(db)

        if phone_number_id:
            existing = repo.get_organization_by_phone_number_id(phone_number_id)
            if existing:
                rprint(f"[yellow]Organization already exists for phone_number_id: {phone_number_id}[/yellow]")
                rprint(f"  ID: {existing.id}")
                rprint(f"  Name: {existing.name}")
                raise typer.Exit(1)

        stored_token = None
        if access_token:
            stored_token = encrypt_access_token(access_token, settings.WHATSAPP_ENCRYPTION_KEY or None)
            if not settings.WHATSAPP_ENCRYPTION_KEY:
                rprint("[yellow]Warning: WHATSAPP_ENCRYPTION_KEY not set, storing token unencrypted[/yellow]")

        org = Organization(
            name=name,
            whatsapp_phone_number_id=phone_number_id,
            whatsapp_business_account_id=waba_id,
            whatsapp_access_token=stored_token,
            auto_reply_message=auto_reply,
            timezone=timezone or settings.DEFAULT_TIMEZONE,
        )
        db.add(org)
        db.commit()

        rprint("[green]Successfully created organization:[/green]")
        rprint(f"  ID: {org.id}")
        rprint(f"  Name: {org.name}")
        rprint(f"  Phone Number ID: {org.whatsapp_phone_number_id or '-'}")
        rprint(f"  Timezone: {org.timezone}")

    finally:
        db.close()


@app.command()
def add_agent(
    org_id: str = typer.Argument(..., help="Organization UUID"),
    display_name: str = typer.Argument(..., help="Agent display name"),
    email: Optional[str] = typer.Option(None, help="Agent email"),
    role: str = typer.Option(AgentRole.AGENT.value, help="owner, admin or agent"),
    queue: str = typer.Option(Queue.BOTH.value, help="sdr, closure or both"),
    status: str = typer.Option(AgentStatus.OFFLINE.value, help="online, away, busy or offline"),
    max_chats: int = typer.Option(10, help="Maximum concurrent open conversations"),
):
    """Add an agent to an organization."""
    org_uuid = parse_uuid(org_id, "organization ID")
    role = parse_choice(role, AgentRole, "role")
    queue = parse_choice(queue, Queue, "queue")
    status = parse_choice(status, AgentStatus, "status")

    if max_chats < 1:
        rprint("[red]max-chats must be at least 1[/red]")
        raise typer.Exit(1)

    db = get_db()

    try:
        if CRMRepository(db).get_organization(org_uuid) is None:
            rprint(f"[red]Organization not found: {org_id}[/red]")
            raise typer.Exit(1)

        agent = Agent(
            org_id=org_uuid,
            display_name=display_name,
            email=email,
            role=role,
            queue=queue,
            status=status,
            max_concurrent_chats=max_chats,
        )
        db.add(agent)
        db.commit()

        rprint("[green]Successfully created agent:[/green]")
        rprint(f"  ID: {agent.id}")
        rprint(f"  Name: {agent.display_name}")
        rprint(f"  Role: {agent.role}  Queue: {agent.queue}  Status: {agent.status}")

    finally:
        db.close()


@app.command()
def set_agent_status(
    agent_id: str = typer.Argument(..., help="Agent UUID"),
    status: str = typer.Argument(..., help="online, away, busy or offline"),
):
    """Change an agent's availability."""
    agent_uuid = parse_uuid(agent_id, "agent ID")
    status = parse_choice(status, AgentStatus, "status")

    db = get_db()

    try:
        agent = CRMRepository(db).get_agent_by_id(agent_uuid)
        if agent is None:
            rprint(f"[red]Agent not found: {agent_id}[/red]")
            raise typer.Exit(1)

        previous = agent.status
        agent.status = status
        AuditTrail(db).log_activity(
            org_id=agent.org_id,
            agent_id=agent.id,
            activity_type=ActivityType.STATUS_CHANGE,
            details={"from": previous, "to": status},
        )
        db.commit()

        rprint(f"[green]{agent.display_name}: {previous} -> {status}[/green]")

    finally:
        db.close()


@app.command()
def list_conversations(
    org_id: str = typer.Argument(..., help="Organization UUID"),
    status: Optional[str] = typer.Option(None, help="Filter by status (pending, open, ...)"),
    limit: int = typer.Option(20, help="Maximum number of conversations to show"),
):
    """List conversations for an organization."""
    org_uuid = parse_uuid(org_id, "organization ID")
    status_filter = parse_choice(status, ConversationStatus, "status") if status else None

    db = get_db()

    try:
        repo = CRMRepository(db)
        conversations = repo.list_conversations(org_uuid, status=status_filter, limit=limit)

        if not conversations:
            rprint("[yellow]No conversations found[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Conversations for organization {org_id[:8]}...")
        table.add_column("Protocol", style="dim")
        table.add_column("Phone")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Agent")
        table.add_column("Unread")
        table.add_column("Last Message")

        for conv in conversations:
            contact = repo.get_contact(conv.contact_id)
            agent = repo.get_agent_by_id(conv.assigned_agent_id) if conv.assigned_agent_id else None
            table.add_row(
                conv.protocol_number,
                contact.phone if contact else "-",
                (contact.name if contact else None) or "-",
                conv.status,
                agent.display_name if agent else "-",
                str(conv.unread_count),
                conv.last_message_at.strftime("%Y-%m-%d %H:%M") if conv.last_message_at else "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def assign_pending(
    org_id: str = typer.Argument(..., help="Organization UUID"),
):
    """Assign pending unassigned conversations to available agents."""
    org_uuid = parse_uuid(org_id, "organization ID")

    db = get_db()

    try:
        assigned = AgentAssignmentEngine(db).assign_pending(org_uuid)
        rprint(f"[green]Assigned {assigned} conversation(s)[/green]")

    finally:
        db.close()


if __name__ == "__main__":
    app()
