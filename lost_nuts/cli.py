"""Lost Nuts CLI - run the recovery service and talk to it."""

import asyncio
import os
from typing import Annotated, Optional

import httpx
import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings, setup_logging
from .token import decode_token
from .types import AppError

app = typer.Typer(
    name="lost-nuts",
    help="Lost Nuts - Cashu ecash recovery service",
    rich_markup_mode="markdown",
)
console = Console()

DEFAULT_API = "http://localhost:3003"


def get_api_url(api: str | None) -> str:
    return (api or os.getenv("LOST_NUTS_API") or DEFAULT_API).rstrip("/")


def handle_api_error(response: httpx.Response) -> None:
    """Print the service's error envelope and exit."""
    try:
        error = response.json().get("error", {})
        message = f"{error.get('name', response.status_code)}: {error.get('message')}"
    except ValueError:
        message = f"{response.status_code}: {response.text}"
    console.print(f"[red]❌ {message}[/red]")
    raise typer.Exit(1)


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Port")] = None,
) -> None:
    """Run the recovery API server."""
    from .api import create_app

    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Recovery job id")],
    api: Annotated[Optional[str], typer.Option("--api", help="Service base URL")] = None,
) -> None:
    """Show the status of a recovery job."""

    async def _status() -> None:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{get_api_url(api)}/api/recovery/{job_id}")
        if not response.is_success:
            handle_api_error(response)

        data = response.json()
        console.print(f"Status: [bold]{data['status']}[/bold]")
        if data.get("error"):
            console.print(f"[red]Error: {data['error']}[/red]")

        result = data.get("result")
        if result:
            table = Table(title=f"Job {job_id}")
            table.add_column("Field", style="cyan")
            table.add_column("Value", style="green")
            for key in (
                "proofs",
                "totalProofs",
                "balance",
                "lastCounter",
                "lastFoundCounter",
                "lastBatchHadSignature",
                "exhausted",
                "walletName",
            ):
                table.add_row(key, str(result.get(key, "")))
            console.print(table)
            if result.get("exhausted"):
                console.print(
                    "[yellow]⚠️  Batches exhausted before the gap limit. "
                    f"Resubmit starting after counter {result.get('lastFoundCounter')}.[/yellow]"
                )

    asyncio.run(_status())


@app.command()
def sweep(
    job_id: Annotated[str, typer.Argument(help="Recovery job id")],
    api: Annotated[Optional[str], typer.Option("--api", help="Service base URL")] = None,
) -> None:
    """Sweep a completed job's recovered balance into a Cashu token."""

    async def _sweep() -> None:
        async with httpx.AsyncClient(timeout=60) as client:
            response = await client.post(f"{get_api_url(api)}/api/recovery/{job_id}/sweep")
        if not response.is_success:
            handle_api_error(response)
        console.print(Panel(response.json()["token"], title="Recovered token"))

    asyncio.run(_sweep())


@app.command()
def decode(
    token: Annotated[str, typer.Argument(help="cashuA/cashuB token")],
) -> None:
    """Show mint, unit and amount of a token."""
    try:
        parsed = decode_token(token)
    except AppError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)

    console.print(f"Mint: {parsed.mint}")
    console.print(f"Unit: {parsed.unit or 'sat'}")
    console.print(f"Proofs: {len(parsed.proofs)}")
    console.print(f"Amount: [bold]{parsed.amount}[/bold]")


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
