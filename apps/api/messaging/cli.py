"""CLI tools for messaging operations."""

import click

from messaging.core.config import settings
from messaging.core.structured_logging import configure_logging
from messaging.db.session import SessionLocal


@click.group()
def cli():
    """Messaging engine CLI tools."""
    configure_logging()


@cli.command("init-db")
def init_db():
    """Create all tables directly (dev/test databases; production uses Alembic)."""
    from messaging.db.base import Base
    from messaging.db.session import engine
    import messaging.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    click.echo("✓ Schema created")


@cli.command("create-user")
@click.option("--email", required=True, help="User email address")
@click.option("--name", "display_name", default=None, help="Display name")
@click.option("--support-agent", is_flag=True, help="Mark the user as a support agent")
def create_user(email: str, display_name: str | None, support_agent: bool):
    """Create a directory user (seed data for local environments)."""
    from messaging.db.models import User

    db = SessionLocal()
    try:
        email = email.strip().lower()
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            click.echo(f"❌ User with email '{email}' already exists")
            return
        user = User(email=email, display_name=display_name, is_support_agent=support_agent)
        db.add(user)
        db.commit()
        click.echo(f"✓ Created user {email}")
        click.echo(f"  ID: {user.id}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command("purge-messages")
@click.option("--batch-size", type=int, default=None, help="Messages deleted per transaction")
@click.option("--max-threads", type=int, default=None, help="Threads visited in this run")
def purge_messages(batch_size: int | None, max_threads: int | None):
    """Run one retention purge cycle now."""
    from messaging.runtime import build_runtime, shutdown_runtime
    from messaging.services.retention_service import purge_expired_messages

    hub = build_runtime(settings=settings)
    db = SessionLocal()
    try:
        result = purge_expired_messages(db, hub, batch_size=batch_size, max_threads=max_threads)
        click.echo(f"✓ Run {result.run_id}")
        click.echo(f"  Threads processed: {result.threads_processed}")
        click.echo(f"  Messages deleted: {result.total_deleted}")
        failures = [d for d in result.details if not d.get("ok")]
        for failure in failures:
            click.echo(f"❌ Thread {failure['thread_id']}: {failure['error']}")
    finally:
        db.close()
        shutdown_runtime(hub)


@cli.command("archive-audits")
@click.option("--grace-days", type=int, default=None, help="Days an archived audit is kept before deletion")
def archive_audits(grace_days: int | None):
    """Archive expired retention audits and delete those past the grace period."""
    from messaging.services.retention_service import (
        archive_expired_audits,
        count_audits,
        purge_archived_audits,
    )

    grace_days = grace_days if grace_days is not None else settings.RETENTION_AUDIT_GRACE_DAYS
    db = SessionLocal()
    try:
        archived = archive_expired_audits(db)
        purged = purge_archived_audits(db, grace_days=grace_days)
        stats = count_audits(db)
        click.echo(f"✓ Archived {archived} audits, deleted {purged}")
        click.echo(f"  Remaining: {stats['active']} active, {stats['archived']} archived")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
