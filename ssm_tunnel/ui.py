"""Terminal output and selection prompts (rich)."""

from __future__ import annotations
from typing import List, Optional, Sequence, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from ssm_tunnel.discovery import Database, Instance, engine_for_port
from ssm_tunnel.killer import KillAllReport, KillOutcome
from ssm_tunnel.registry import SessionRecord

console = Console()

T = TypeVar("T")

ROLE_LABELS = {
    "writer": "Writer",
    "reader": "Reader",
    "primary": "Primary",
    "replica": "Replica",
    "instance": "Instance",
}


class SelectionAborted(Exception):
    pass


# ---------------- labels ----------------
def format_instance_label(inst: Instance) -> str:
    return f"{inst.name or '(no name)'} ({inst.id})"


def format_role(role: str) -> str:
    if role in ROLE_LABELS:
        return ROLE_LABELS[role]
    engine, _, kind = role.partition("-")
    if engine in ("redis", "valkey"):
        kind_label = "Primary" if kind == "primary" else "Replica"
        return f"{engine.capitalize()} {kind_label}"
    if engine == "memcached":
        return "Memcached"
    return "?"


def format_db_label(db: Database) -> str:
    return f"[{engine_for_port(db.port)}] {format_role(db.role)} - {db.endpoint}:{db.port}"


def filter_labels(labels: Sequence[str], query: str) -> List[int]:
    """Indexes of labels containing ``query`` (case-insensitive)."""
    query = query.strip().lower()
    return [i for i, label in enumerate(labels) if query in label.lower()]


# ---------------- prompts ----------------
def choose(title: str, items: Sequence[T], labels: Sequence[str], searchable: bool = True) -> T:
    if not items:
        raise SelectionAborted(f"nothing to select for: {title}")
    indexes = list(range(len(items)))
    if searchable and len(items) > 10:
        query = Prompt.ask("Search (blank for all)", default="", console=console)
        if query:
            indexes = filter_labels(labels, query) or indexes
    tbl = Table(title=title)
    tbl.add_column("#", justify="right")
    tbl.add_column("Item")
    for n, i in enumerate(indexes, start=1):
        tbl.add_row(str(n), escape(labels[i]))
    console.print(tbl)
    while True:
        choice = IntPrompt.ask(f"Select (1-{len(indexes)})", default=1, console=console)
        if 1 <= choice <= len(indexes):
            return items[indexes[choice - 1]]
        console.print("[red]Invalid selection[/red]")


def prompt_profile(profiles: List[str]) -> str:
    return choose("AWS Profiles", profiles, profiles)


def prompt_instance(instances: List[Instance]) -> Instance:
    return choose("EC2 Instances", instances, [format_instance_label(i) for i in instances])


def prompt_database(dbs: List[Database]) -> Database:
    return choose("Databases", dbs, [format_db_label(db) for db in dbs])


# ---------------- status output ----------------
def print_sessions(records: List[SessionRecord]) -> None:
    if not records:
        console.print("No active port-forward sessions.")
        return
    tbl = Table(title="Active Port-Forward Sessions")
    tbl.add_column("PID", justify="right")
    tbl.add_column("Profile")
    tbl.add_column("Instance")
    tbl.add_column("Target")
    for r in records:
        tbl.add_row(str(r.pid), escape(r.profile), escape(r.instance_label), escape(r.target_descriptor))
    console.print(tbl)


def print_kill_outcome(pid: int, outcome: KillOutcome) -> None:
    if outcome is KillOutcome.KILLED:
        console.print(f"[green]Killed PID {pid}[/green]")
    else:
        console.print(f"[yellow]PID {pid} already dead, cleaned up[/yellow]")


def print_kill_all_report(report: KillAllReport) -> None:
    if not report.found:
        console.print("No active sessions to kill.")
        return
    if report.unreadable:
        console.print(
            f"[yellow]Session registry was unreadable and has been removed: {escape(report.unreadable)}[/yellow]"
        )
        console.print("[yellow]Sessions it listed may still be running.[/yellow]")
    for record, outcome in report.outcomes:
        print_kill_outcome(record.pid, outcome)
    for record, error in report.failures:
        console.print(f"[red]Failed to kill PID {record.pid}: {escape(str(error.cause))}[/red]")
    if report.succeeded == 0:
        console.print("No alive sessions were found.")
    else:
        console.print(f"Successfully killed {report.succeeded} session(s).")


def print_error(message: str, hint: Optional[str] = None) -> None:
    console.print(f"[red]{escape(message)}[/red]")
    if hint:
        console.print(f"[yellow]{hint}[/yellow]")
