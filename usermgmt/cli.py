"""User Management CLI tool (usermgmt)."""

import typer

app = typer.Typer(name="usermgmt", help="User Management CLI")
db_app = typer.Typer(help="Database management commands")
logs_app = typer.Typer(help="Request log maintenance")
notifications_app = typer.Typer(help="Notification delivery")
app.add_typer(db_app, name="db")
app.add_typer(logs_app, name="logs")
app.add_typer(notifications_app, name="notifications")


def _server_connection():
    """Connect to the MySQL server named in DATABASE_URL, without selecting a database."""
    import pymysql
    from sqlalchemy.engine import make_url
    from usermgmt.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"❌ DATABASE_URL is not a MySQL URL ({url.drivername})")
        raise typer.Exit(code=1)
    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    return conn, url.database


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    conn, db_name = _server_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.commit()
        typer.echo(f"✅ Database '{db_name}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables."""
    from usermgmt.db.base import Base
    from usermgmt.db.session import engine
    import usermgmt.models  # noqa: F401  registers every table on Base.metadata

    Base.metadata.create_all(bind=engine)
    typer.echo("✅ Tables created")


@db_app.command("seed")
def db_seed():
    """Seed permissions, roles, the admin user and notification types."""
    from usermgmt.db.session import SessionLocal
    from usermgmt.db.seeds.seed_roles import seed_roles
    from usermgmt.db.seeds.seed_admin import seed_admin
    from usermgmt.db.seeds.seed_notification_types import seed_notification_types

    db = SessionLocal()
    try:
        seed_roles(db)
        seed_admin(db)
        seed_notification_types(db)
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@db_app.command("reset")
def db_reset():
    """Drop and recreate the database (DANGER)."""
    confirm = typer.confirm("⚠️  This will DROP the entire database. Continue?")
    if not confirm:
        raise typer.Abort()

    conn, db_name = _server_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(f"DROP DATABASE IF EXISTS `{db_name}`")
        cursor.execute(f"CREATE DATABASE `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.commit()
        typer.echo(f"✅ Database '{db_name}' reset")
    finally:
        conn.close()


@logs_app.command("cleanup")
def logs_cleanup(
    days: int = typer.Option(30, min=1, help="Delete entries older than this many days"),
):
    """Purge old request logs."""
    from usermgmt.db.session import SessionLocal
    from usermgmt.services.log_service import LogService

    db = SessionLocal()
    try:
        removed = LogService(db).cleanup(days)
    finally:
        db.close()
    typer.echo(f"✅ Removed {removed} log entries older than {days} days")


@notifications_app.command("dispatch")
def notifications_dispatch(
    batch_size: int = typer.Option(100, min=1, help="Maximum notifications per pass"),
):
    """Deliver due notifications once, without a Celery worker."""
    from usermgmt.db.session import SessionLocal
    from usermgmt.services.channels import get_channel_sender
    from usermgmt.services.notification_service import NotificationService

    db = SessionLocal()
    try:
        result = NotificationService(db, get_channel_sender()).dispatch_due(batch_size)
    finally:
        db.close()
    typer.echo(
        f"✅ Delivered {result['delivered']}, failed {result['failed']}, requeued {result['retried']}"
    )


@app.command("health")
def health(url: str = typer.Option("http://localhost:8000", help="API base URL")):
    """Check that a running API answers."""
    import httpx
    try:
        resp = httpx.get(f"{url.rstrip('/')}/api/health", timeout=5)
    except httpx.HTTPError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=1)
    typer.echo(resp.json())


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("usermgmt.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
