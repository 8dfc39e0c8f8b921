"""Dynamic CRUD CLI tool (dyncrud)."""

import json
import typer

app = typer.Typer(name="dyncrud", help="Dynamic CRUD platform CLI")
db_app = typer.Typer(help="Database management commands")
catalog_app = typer.Typer(help="Table catalog commands")
app.add_typer(db_app, name="db")
app.add_typer(catalog_app, name="catalog")


@db_app.command("init")
def db_init():
    """Create the platform tables (accounts, ledger, audit) if missing."""
    from dyncrud.db.base import Base
    from dyncrud.db.session import engine, audit_engine
    from dyncrud.models import CrudAuditRecord

    Base.metadata.create_all(bind=engine)
    if audit_engine.url != engine.url:
        CrudAuditRecord.__table__.create(bind=audit_engine, checkfirst=True)
    typer.echo("✅ Tables created (or already exist)")


@db_app.command("seed")
def db_seed():
    """Seed roles and the super-admin."""
    from dyncrud.db.session import SessionLocal
    from dyncrud.db.seeds.seed_roles import seed_roles
    from dyncrud.db.seeds.seed_super_admin import seed_super_admin

    db = SessionLocal()
    try:
        seed_roles(db)
        seed_super_admin(db)
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@catalog_app.command("show")
def catalog_show(
    table: str = typer.Argument(None, help="Describe one table instead of listing all"),
):
    """Print the catalog as loaded from the configured source."""
    from dyncrud.services.catalog_service import TableCatalog

    catalog = TableCatalog.from_settings()
    if table:
        typer.echo(json.dumps(catalog.describe(table).to_dict(), indent=2))
        return
    for name in catalog.table_names():
        descriptor = catalog.describe(name)
        typer.echo(f"  {name} (pk: {descriptor.primary_key_column}, {len(descriptor.columns)} columns)")


@catalog_app.command("check")
def catalog_check():
    """Validate the catalog source and compare it against the live database."""
    import sqlalchemy as sa
    from dyncrud.core.exceptions import CatalogError
    from dyncrud.db.session import engine
    from dyncrud.services.catalog_service import TableCatalog

    try:
        catalog = TableCatalog.from_settings()
    except CatalogError as e:
        typer.echo(f"❌ {e.message}")
        raise typer.Exit(code=1)

    inspector = sa.inspect(engine)
    existing = {n.lower(): n for n in inspector.get_table_names()}
    problems = 0
    for name in catalog.table_names():
        real = existing.get(name.lower())
        if real is None:
            typer.echo(f"❌ {name}: table does not exist")
            problems += 1
            continue
        live = {c["name"].lower() for c in inspector.get_columns(real)}
        missing = [c for c in catalog.describe(name).columns if c.lower() not in live]
        if missing:
            typer.echo(f"❌ {name}: columns missing in database: {', '.join(missing)}")
            problems += 1
        else:
            typer.echo(f"✅ {name}")
    if problems:
        raise typer.Exit(code=1)


@app.command("tables")
def list_tables(
    token: str = typer.Option(..., envvar="DYNCRUD_TOKEN", help="Bearer token"),
    url: str = typer.Option("http://localhost:8000", help="API base URL"),
):
    """List catalog tables through the API."""
    import httpx
    resp = httpx.get(
        f"{url}/api/crud/tables",
        headers={"Authorization": f"Bearer {token}"},
    )
    data = resp.json()
    if resp.status_code != 200:
        typer.echo(f"❌ {data.get('code')}: {data.get('message')}")
        raise typer.Exit(code=1)
    for name in data.get("tables", []):
        typer.echo(f"  {name}")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("dyncrud.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
