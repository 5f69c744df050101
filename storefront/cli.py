"""CLI for the storefront API.

Provides commands for database setup, telemetry mode switching, load
generation and serving the API.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storefront.config import OtelMode, get_settings

# Initialize Typer app
app = typer.Typer(
    name="storefront",
    help="Storefront API - OpenTelemetry-instrumented e-commerce orders",
    add_completion=False,
)

console = Console()

MODE_LINE = re.compile(r"^OTEL_MODE=(.*)$", re.MULTILINE)

ORDER_SCENARIOS: List[Dict[str, Any]] = [
    {"userId": 1, "items": [{"productId": 1, "quantity": 1}], "paymentMethod": "credit_card"},
    {
        "userId": 2,
        "items": [{"productId": 2, "quantity": 2}, {"productId": 3, "quantity": 1}],
        "paymentMethod": "debit_card",
    },
    {"userId": 3, "items": [{"productId": 4, "quantity": 1}], "paymentMethod": "paypal"},
]


def read_env_mode(env_path: Path) -> str:
    """Current ``OTEL_MODE`` in an env file (``direct`` when unset)."""
    match = MODE_LINE.search(env_path.read_text(encoding="utf-8"))
    return match.group(1).strip() if match else OtelMode.DIRECT.value


def write_env_mode(env_path: Path, mode: OtelMode) -> None:
    """Replace or append ``OTEL_MODE`` in an env file, keeping everything else."""
    content = env_path.read_text(encoding="utf-8")
    line = f"OTEL_MODE={mode.value}"

    if MODE_LINE.search(content):
        content = MODE_LINE.sub(line, content, count=1)
    else:
        if content and not content.endswith("\n"):
            content += "\n"
        content += f"\n# OpenTelemetry mode: 'direct' or 'collector'\n{line}\n"

    env_path.write_text(content, encoding="utf-8")


@app.command()
def mode(
    target: str = typer.Argument(..., help="direct, collector or status"),
    env_file: Path = typer.Option(Path(".env"), "--env-file", "-e", help="Env file to edit"),
) -> None:
    """Switch between direct and collector telemetry export, or show the current mode."""
    if target not in ("direct", "collector", "status"):
        console.print("[red]Error:[/red] mode must be one of: direct, collector, status")
        raise typer.Exit(1)

    if not env_file.exists():
        console.print(
            f"[red]Error:[/red] {env_file} not found. Create one from .env.example"
        )
        raise typer.Exit(1)

    if target == "status":
        current = read_env_mode(env_file)
        route = "App -> Backend" if current == "direct" else "App -> Collector -> Backend"
        console.print(
            Panel(
                f"Current mode: [bold]{current.upper()}[/bold]\n{route}\n\n"
                "Switch modes:\n  storefront mode direct\n  storefront mode collector",
                title="OpenTelemetry",
            )
        )
        return

    new_mode = OtelMode(target)
    write_env_mode(env_file, new_mode)
    console.print(f"\n[green]Switched to {new_mode.value.upper()} mode[/green]")

    if new_mode is OtelMode.COLLECTOR:
        console.print(
            "\nNext:\n"
            "  1. Point the collector at your backend (OTLP endpoint and auth header)\n"
            "  2. Start the collector\n"
            "  3. storefront serve"
        )
    else:
        console.print("\nNext: storefront serve")


@app.command("setup-db")
def setup_db(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables first"),
) -> None:
    """Create the schema and load sample users and products."""
    from storefront.database import (
        create_engine,
        create_session_factory,
        init_db,
        seed_database,
    )

    settings = get_settings()

    async def _run() -> Dict[str, int]:
        engine = create_engine(settings)
        try:
            await init_db(engine, drop=drop)
            return await seed_database(create_session_factory(engine))
        finally:
            await engine.dispose()

    try:
        inserted = asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Error during database setup:[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[green]Database ready.[/green] Inserted {inserted['users']} users "
        f"and {inserted['products']} products."
    )


@dataclass
class LoadTestStats:
    """Request counters for a load test run."""

    total: int = 0
    success: int = 0
    errors: int = 0
    log: List[str] = field(default_factory=list)

    def ok(self, message: str) -> None:
        self.total += 1
        self.success += 1
        self.log.append(f"[green]ok[/green]  {message}")

    def error(self, message: str) -> None:
        self.total += 1
        self.errors += 1
        self.log.append(f"[red]err[/red] {message}")


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("error", {}).get("code")
    except ValueError:
        return None


async def run_load_test(client: httpx.AsyncClient, pause: float = 0.2) -> LoadTestStats:
    """
    Exercise every endpoint, including the deliberate failure paths.

    Expected failures (404, 409, declined payments) count as errors so the
    summary shows how many error traces were produced.
    """
    stats = LoadTestStats()

    async def step() -> None:
        if pause:
            await asyncio.sleep(pause)

    # Catalogue reads: the second listing should come from cache
    for label in ("products", "products (cached)"):
        response = await client.get("/products")
        response.raise_for_status()
        stats.ok(f"{label}: {response.json()['count']} items, cached={response.json()['cached']}")
        await step()

    for product_id in range(1, 6):
        response = await client.get(f"/products/{product_id}")
        response.raise_for_status()
        stats.ok(f"product {product_id}: {response.json()['product']['name']}")
        await step()

    response = await client.get("/products/search", params={"q": "laptop"})
    response.raise_for_status()
    stats.ok(f"search 'laptop': {response.json()['count']} results")
    await step()

    # Orders
    for payload in ORDER_SCENARIOS:
        response = await client.post("/orders", json=payload)
        if response.status_code == 201:
            order = response.json()["order"]
            stats.ok(f"order {order['id']}: ${order['total_amount']} - {order['status']}")
        else:
            stats.error(f"order failed: {_error_code(response)}")
        await step()

    for user_id in range(1, 4):
        response = await client.get(f"/orders/user/{user_id}")
        response.raise_for_status()
        stats.ok(f"user {user_id}: {response.json()['count']} orders")
        await step()

    # Error scenarios
    response = await client.get("/products/99999")
    stats.error(f"invalid product: {_error_code(response)}")
    await step()

    response = await client.post(
        "/orders",
        json={
            "userId": 1,
            "items": [{"productId": 1, "quantity": 10000}],
            "paymentMethod": "credit_card",
        },
    )
    stats.error(f"insufficient inventory: {_error_code(response)}")
    await step()

    for _ in range(5):
        response = await client.post(
            "/orders",
            json={
                "userId": 1,
                "items": [{"productId": 2, "quantity": 1}],
                "paymentMethod": "credit_card",
            },
        )
        if response.status_code == 201:
            stats.ok(f"order {response.json()['order']['id']} succeeded")
        else:
            stats.error(f"payment failed: {_error_code(response)}")
        await step()

    # Concurrent reads
    responses = await asyncio.gather(
        *(client.get(f"/products/{i % 10 + 1}") for i in range(1, 11))
    )
    for response in responses:
        if response.status_code == 200:
            stats.ok(f"concurrent product {response.json()['product']['id']}")
        else:
            stats.error(f"concurrent product: {_error_code(response)}")

    return stats


@app.command("load-test")
def load_test(
    api_url: str = typer.Option(
        "http://localhost:3000", "--api-url", "-u", envvar="API_URL", help="API base URL"
    ),
    pause: float = typer.Option(0.2, "--pause", help="Seconds to wait between steps"),
) -> None:
    """Generate traffic (including error traces) against a running API."""
    console.print(f"[blue]Starting load test against:[/blue] {api_url}\n")

    async def _run() -> LoadTestStats:
        async with httpx.AsyncClient(base_url=api_url, timeout=30.0) as client:
            return await run_load_test(client, pause=pause)

    try:
        stats = asyncio.run(_run())
    except httpx.HTTPError as e:
        console.print(f"[red]Load test error:[/red] {e}")
        raise typer.Exit(1)

    for line in stats.log:
        console.print(f"  {line}")

    table = Table(title="Load Test Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Share", justify="right")
    total = stats.total or 1
    table.add_row("Total requests", str(stats.total), "100.0%")
    table.add_row("Successful", str(stats.success), f"{stats.success / total * 100:.1f}%")
    table.add_row("Errors", str(stats.errors), f"{stats.errors / total * 100:.1f}%")
    console.print()
    console.print(table)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storefront.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=reload or settings.debug,
        workers=1 if (reload or settings.debug) else settings.api_workers,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
