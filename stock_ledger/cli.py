"""Command-line interface for the stock ledger."""

import sys
from datetime import datetime
from typing import Optional

import click
from pydantic import ValidationError

from .models.identity import CallerIdentity
from .models.movement import Counterparty, MovementFilter, MovementInput
from .services.audit_service import AuditService
from .services.catalog import ProductCatalog
from .services.ledger import StockLedger
from .storage.database import Database, safe_url
from .storage.repository import LedgerStore
from .utils.config import get_config
from .utils.exceptions import LedgerError


class LedgerContext:
    """Lazily built services shared by the subcommands."""

    def __init__(self, database_url: Optional[str], user_id: str, user_name: Optional[str]):
        self.database_url = database_url
        self.caller = CallerIdentity(id=user_id, name=user_name or user_id)
        self._store: Optional[LedgerStore] = None

    @property
    def store(self) -> LedgerStore:
        if self._store is None:
            database = Database(self.database_url)
            database.create_all()
            self._store = LedgerStore(database)
        return self._store

    @property
    def ledger(self) -> StockLedger:
        return StockLedger(self.store)

    @property
    def catalog(self) -> ProductCatalog:
        return ProductCatalog(self.store)


pass_ledger = click.make_pass_decorator(LedgerContext)


def fail(message: str):
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version="1.0.0")
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="SQLAlchemy database URL")
@click.option("--user-id", envvar="LEDGER_USER_ID", default="local", show_default=True,
              help="Account the command acts as")
@click.option("--user-name", envvar="LEDGER_USER_NAME", default=None, help="Display name for attribution")
@click.pass_context
def cli(ctx, database_url: Optional[str], user_id: str, user_name: Optional[str]):
    """
    Stock Ledger CLI.

    Manage products, record stock entries and exits, and inspect valuation.
    """
    ctx.obj = LedgerContext(database_url, user_id, user_name)


@cli.command("init-db")
@pass_ledger
def init_db(obj: LedgerContext):
    """Create the database tables."""
    try:
        url = safe_url(obj.store.database.url)
        click.echo(click.style(f"✓ Database ready: {url}", fg="green"))
    except LedgerError as e:
        fail(f"Database error: {e.message}")


@cli.command("add-product")
@click.argument("name")
@click.option("--category", required=True, help="Category label")
@click.option("--price", required=True, help="Sale price, e.g. 20.00")
@click.option("--quantity", type=int, default=0, show_default=True, help="Opening quantity")
@click.option("--cost", default=None, help="Acquisition cost")
@click.option("--description", default="", help="Free text description")
@click.option("--supplier", default="", help="Supplier name")
@pass_ledger
def add_product(obj: LedgerContext, name, category, price, quantity, cost, description, supplier):
    """Add a product to the catalog."""
    try:
        product = obj.catalog.create_product(obj.caller, {
            "name": name,
            "category": category,
            "price": price,
            "quantity": quantity,
            "cost": cost,
            "description": description,
            "supplier": supplier,
        })
    except LedgerError as e:
        fail(e.message)

    click.echo(click.style(f"✓ Created {product.name}", fg="green", bold=True))
    click.echo(f"ID:        {product.id}")
    click.echo(f"Quantity:  {product.quantity}")
    click.echo(f"Price:     {product.price}")


@cli.command()
@click.option("--category", default=None, help="Only this category")
@click.option("--search", default=None, help="Name contains")
@pass_ledger
def products(obj: LedgerContext, category, search):
    """List products, newest first."""
    try:
        items = obj.catalog.list_products(obj.caller, category=category, search=search)
    except LedgerError as e:
        fail(e.message)

    if not items:
        click.echo("No products.")
        return

    for product in items:
        click.echo(
            f"{product.id}  {product.name:<30} {product.category:<15} "
            f"qty={product.quantity:<6} price={product.price}"
        )


@cli.command()
@click.argument("movement_type", metavar="TYPE", type=click.Choice(["entry", "exit", "purchase", "sale"]))
@click.argument("product_id")
@click.argument("quantity", type=int)
@click.option("--supplier", default=None, help="Supplier name (entries)")
@click.option("--customer", default=None, help="Customer name (exits)")
@click.option("--reason", default=None, help="Reason for the movement")
@click.option("--date", "occurred_at", type=click.DateTime(), default=None,
              help="When it happened (UTC), defaults to now")
@pass_ledger
def record(obj: LedgerContext, movement_type, product_id, quantity, supplier, customer, reason, occurred_at):
    """
    Record a stock movement.

    TYPE is entry or exit, PRODUCT_ID the product, QUANTITY the units moved.
    """
    movement_input = MovementInput(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        occurred_at=occurred_at,
        supplier=Counterparty(name=supplier),
        customer=Counterparty(name=customer),
        reason=reason
    )

    try:
        movement = obj.ledger.record_movement(obj.caller, movement_input)
        product = obj.catalog.get_product(obj.caller, product_id)
    except LedgerError as e:
        fail(f"{e.code}: {e.message}")

    click.echo(click.style(
        f"✓ Recorded {movement.type.value} of {movement.quantity} x {movement.product_name}",
        fg="green", bold=True
    ))
    click.echo(f"Movement:  {movement.id}")
    click.echo(f"On hand:   {product.quantity}")


@cli.command()
@click.option("--start", type=click.DateTime(), default=None, help="From (inclusive, UTC)")
@click.option("--end", type=click.DateTime(), default=None, help="Until (inclusive, UTC)")
@click.option("--category", default=None, help="Product category")
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum rows to show")
@pass_ledger
def movements(obj: LedgerContext, start: Optional[datetime], end: Optional[datetime], category, limit):
    """List movements, most recent first."""
    try:
        movement_filter = MovementFilter(start=start, end=end, category=category)
    except ValueError as e:
        fail(str(e))

    shown = 0
    try:
        for movement in obj.ledger.list_movements(obj.caller, movement_filter):
            if shown >= limit:
                click.echo("... more movements not shown (use --limit)")
                break
            sign = "+" if movement.type.value == "entry" else "-"
            click.echo(
                f"{movement.occurred_at:%Y-%m-%d %H:%M}  {sign}{movement.quantity:<5} "
                f"{movement.product_name:<30} @ {movement.price}  by {movement.user_name}"
            )
            shown += 1
    except LedgerError as e:
        fail(e.message)

    if shown == 0:
        click.echo("No movements.")


@cli.command()
@click.option("--start", type=click.DateTime(), default=None, help="Movements from (inclusive, UTC)")
@click.option("--end", type=click.DateTime(), default=None, help="Movements until (inclusive, UTC)")
@click.option("--category", default=None, help="Only this category")
@click.option("--days", type=click.IntRange(1, 366), default=None,
              help="Length of the daily series when --start/--end leave it open")
@pass_ledger
def valuation(obj: LedgerContext, start: Optional[datetime], end: Optional[datetime], category, days):
    """Show stock value, profit, movement totals and their breakdowns."""
    try:
        movement_filter = MovementFilter(start=start, end=end, category=category)
    except ValueError as e:
        fail(str(e))

    try:
        result = obj.ledger.compute_stock_valuation(obj.caller, movement_filter, days=days)
    except LedgerError as e:
        fail(e.message)

    click.echo("Stock Valuation:")
    click.echo("=" * 60)
    click.echo(result.get_summary())


@cli.command()
@click.option("--all-accounts", is_flag=True, help="Audit every account, not only --user-id")
@pass_ledger
def audit(obj: LedgerContext, all_accounts: bool):
    """Check stored quantities against the movement log."""
    try:
        result = AuditService(obj.store).run_audit(None if all_accounts else obj.caller.id)
    except LedgerError as e:
        fail(e.message)

    click.echo("─" * 60)
    if result.consistent:
        click.echo(click.style("✓ Ledger consistent", fg="green", bold=True))
    else:
        click.echo(click.style("✗ Ledger mismatches found", fg="red", bold=True))
    click.echo(result.get_summary())
    click.echo("─" * 60)

    sys.exit(0 if result.consistent else 1)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to PORT")
def serve(host: str, port: Optional[int]):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "stock_ledger.server:app",
        host=host,
        port=port or config.env.port,
        reload=not config.is_production
    )


@cli.command()
def schedule():
    """Run the consistency audit scheduler in the foreground."""
    from .scheduler import main

    main()


@cli.command("config-info")
def config_info():
    """Display current configuration settings."""
    try:
        config = get_config()
    except ValidationError as e:
        fail(f"Error loading config: {str(e)}")

    click.echo("Configuration Settings:")
    click.echo("=" * 60)
    click.echo()

    click.echo("Environment:")
    click.echo(f"  Environment:     {config.env.environment}")
    click.echo(f"  Log level:       {config.logging.level}")
    click.echo(f"  Log to file:     {config.env.log_to_file}")
    click.echo()

    click.echo("Database:")
    click.echo(f"  URL:             {safe_url(config.env.database_url)}")
    click.echo()

    click.echo("Identity:")
    click.echo(f"  Secret:          {'*' * len(config.env.identity_secret)}")
    click.echo(f"  Validate:        {config.identity.validate_signature}")
    click.echo()

    click.echo("Audit:")
    click.echo(f"  Scheduler:       {config.scheduler.enabled}")
    click.echo(f"  Interval:        {config.env.audit_interval_minutes} minutes")
    click.echo()


if __name__ == "__main__":
    cli()
