"""Terminal output: the success banner and the stats table."""

from __future__ import annotations

from datetime import timedelta

from loguru import logger
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from skyclaim.stats import StatsSnapshot
from skyclaim.types import VerifiedInstance

console = Console(stderr=True)


def _fmt_uptime(delta: timedelta) -> str:
    total = int(delta.total_seconds())
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours}h{minutes:02d}m{seconds:02d}s"


def _fmt_number(value: float | None) -> str:
    return "?" if value is None else f"{value:g}"


def celebration_panel(alias: str, instance_id: str, verified: VerifiedInstance | None) -> Panel:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold cyan", justify="right")
    grid.add_column()

    grid.add_row("Account", alias)
    grid.add_row("Instance", instance_id)

    if verified is None:
        grid.add_row("Verified", Text("not confirmed", style="yellow"))
    else:
        grid.add_row("Region", verified.region)
        grid.add_row("State", verified.lifecycle_state or "?")
        grid.add_row(
            "Specs",
            f"{_fmt_number(verified.ocpus)} OCPUs / {_fmt_number(verified.memory_gb)}GB "
            f"(requested {verified.requested_ocpus:g} / {verified.requested_memory_gb:g}GB)",
        )
        grid.add_row("Public IP", verified.public_ip or "pending")
        if verified.private_ip:
            grid.add_row("Private IP", verified.private_ip)
        grid.add_row(
            "Verified",
            Text("yes", style="green") if verified.verified else Text("no", style="yellow"),
        )

    body: list[Table | Text] = [grid]
    if verified is not None and verified.discrepancies:
        body.append(Text("\n".join(f"! {msg}" for msg in verified.discrepancies), style="yellow"))

    return Panel(
        Group(*body),
        title="[bold green]INSTANCE PROVISIONED[/bold green]",
        border_style="green",
        expand=False,
    )


def celebrate(alias: str, instance_id: str, verified: VerifiedInstance | None) -> None:
    """Log the success and print the banner with a terminal bell."""
    log = logger.bind(account=alias)
    if verified is not None and verified.public_ip:
        log.success("Instance {id} is up at {ip}", id=instance_id, ip=verified.public_ip)
    else:
        log.success("Instance {id} provisioned", id=instance_id)

    console.print(celebration_panel(alias, instance_id, verified))
    console.bell()


def stats_table(snapshot: StatsSnapshot, provisioned: int = 0, accounts: int = 0) -> Table:
    table = Table(title="skyclaim status", show_header=True, header_style="bold")
    table.add_column("Uptime")
    table.add_column("Cycles", justify="right")
    table.add_column("Capacity hits", justify="right")
    table.add_column("Other errors", justify="right")
    table.add_column("Successes", justify="right")
    table.add_column("Provisioned", justify="right")
    table.add_column("Last success")

    last = snapshot.last_success_at.strftime("%Y-%m-%d %H:%M:%S") if snapshot.last_success_at else "-"
    table.add_row(
        _fmt_uptime(snapshot.uptime),
        str(snapshot.cycles),
        str(snapshot.capacity_errors),
        str(snapshot.other_errors),
        str(snapshot.successes),
        f"{provisioned}/{accounts}",
        last,
    )
    return table


def print_stats(snapshot: StatsSnapshot, provisioned: int = 0, accounts: int = 0) -> None:
    console.print(stats_table(snapshot, provisioned, accounts))
