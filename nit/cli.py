"""
nit CLI

Command-line interface for versioning agent cards.
"""

import sys
import json
import logging
from datetime import datetime
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .config import DEFAULT_REMOTE, load_server_config, set_remote_credential
from .diff import format_diff
from .errors import NitError
from .models import LoginPayload
from .refs import MAIN_BRANCH
from .repository import Repository
from .telemetry import init_telemetry


console = Console()


def _fail(error: NitError):
    console.print(f"[red]error:[/red] {escape(error.reason)}")
    sys.exit(1)


def _short(digest: Optional[str]) -> str:
    return digest[:8] if digest else "-"


@click.group()
@click.version_option(__version__, prog_name="nit")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose: bool):
    """nit - version control for agent cards"""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    init_telemetry()


# =============================================================================
# Local Commands
# =============================================================================

@cli.command()
@click.option("--api-base", default=None, help="Remote API base URL for origin")
@click.option("--card-host", default=None, help="Host agent cards are served under")
def init(api_base: Optional[str], card_host: Optional[str]):
    """Initialize a nit repository in the current directory."""
    try:
        result = Repository.init(".", api_base=api_base, card_host=card_host)
    except NitError as e:
        _fail(e)

    skills = ", ".join(result.skills_found) or "(none)"
    console.print(Panel(
        f"Agent ID:   [cyan]{result.agent_id}[/cyan]\n"
        f"Public key: {result.public_key}\n"
        f"Card URL:   {result.card_url or '(not set)'}\n"
        f"Skills:     {escape(skills)}",
        title="Initialized nit repository",
    ))
    console.print(f"[green]✓[/green] Created .nit/ and agent-card.json on branch [bold]{MAIN_BRANCH}[/bold]")


@cli.command()
def status():
    """Show branch, identity and uncommitted changes."""
    try:
        result = Repository.find().status()
    except NitError as e:
        _fail(e)

    console.print(f"On branch [bold]{result.branch}[/bold]")
    console.print(f"Agent ID:   [cyan]{result.agent_id}[/cyan]")
    console.print(f"Public key: {result.public_key}")
    console.print(f"Card URL:   {result.card_url or '(not set)'}")

    if result.card_missing:
        console.print("\n[yellow]agent-card.json is missing.[/yellow] Run `nit checkout` to restore it.")
    elif result.uncommitted_changes:
        console.print("\n[yellow]Uncommitted changes:[/yellow]")
        console.print(format_diff(result.uncommitted_changes))
    else:
        console.print("\nWorking card clean.")

    table = Table(title="Branches")
    table.add_column("Branch", style="cyan")
    table.add_column("Ahead", justify="right")
    for b in result.branches:
        marker = "* " if b.name == result.branch else "  "
        table.add_row(marker + b.name, str(b.ahead))
    console.print(table)


@cli.command()
@click.option("--message", "-m", required=True, help="Commit message")
def commit(message: str):
    """Record the working card on the current branch."""
    try:
        repo = Repository.find()
        c = repo.commit(message)
        branch = repo.refs.get_head()
    except NitError as e:
        _fail(e)

    console.print(f"[green]✓[/green] {escape(f'[{branch} {_short(c.hash)}]')} {escape(message)}")


@cli.command()
@click.option("--count", "-n", default=50, type=int, help="Maximum number of commits")
def log(count: int):
    """Show commit history of the current branch."""
    try:
        commits = list(Repository.find().log(limit=count))
    except NitError as e:
        _fail(e)

    for c in commits:
        when = datetime.fromtimestamp(c.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        console.print(f"[yellow]commit {c.hash}[/yellow]")
        console.print(f"Author: {escape(c.author)}")
        console.print(f"Date:   {when}")
        console.print(f"\n    {escape(c.message)}\n")


@cli.command()
@click.argument("target", required=False)
def diff(target: Optional[str]):
    """Diff HEAD against the working card, a branch or a commit."""
    try:
        result = Repository.find().diff(target)
    except NitError as e:
        _fail(e)

    console.print(format_diff(result))


@cli.command()
@click.argument("name", required=False)
@click.option("--delete", "-d", is_flag=True, help="Delete the named branch")
def branch(name: Optional[str], delete: bool):
    """List branches, create one, or delete one with -d."""
    try:
        repo = Repository.find()
        if name is None:
            current = repo.refs.get_head()
            for b in repo.branch():
                if b.name == current:
                    console.print(f"* [green]{b.name}[/green] {_short(b.commit_hash)}")
                else:
                    console.print(f"  {b.name} {_short(b.commit_hash)}")
            return

        if delete:
            tip = repo.delete_branch(name)
            console.print(f"[green]✓[/green] Deleted branch {name} (was {_short(tip)})")
        else:
            created = repo.branch(name)
            console.print(f"[green]✓[/green] Created branch {name} at {_short(created.commit_hash)}")
    except NitError as e:
        _fail(e)


@cli.command()
@click.argument("name")
def checkout(name: str):
    """Switch to another branch."""
    try:
        Repository.find().checkout(name)
    except NitError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Switched to branch {name}")


# =============================================================================
# Remote Commands
# =============================================================================

@cli.command()
@click.option("--all", "push_all", is_flag=True, help="Push every branch")
@click.option("--remote", "-r", default=DEFAULT_REMOTE, help="Remote name")
def push(push_all: bool, remote: str):
    """Push the current branch (or all branches) to a remote."""
    try:
        results = Repository.find().push(all=push_all, remote=remote)
    except NitError as e:
        _fail(e)

    failed = False
    for r in results:
        if r.success:
            console.print(f"[green]✓[/green] {r.branch} → {r.remote_url} ({_short(r.commit_hash)})")
        else:
            failed = True
            console.print(f"[red]✗[/red] {r.branch}: {escape(r.error or 'unknown error')}")

    if failed:
        sys.exit(1)


@cli.group(invoke_without_command=True)
@click.option("--remote", "-r", default=DEFAULT_REMOTE, help="Remote name")
@click.pass_context
def remote(ctx, remote: str):
    """Show or manage a remote."""
    ctx.obj["remote"] = remote
    if ctx.invoked_subcommand is None:
        ctx.invoke(remote_info)


@remote.command("info")
@click.pass_context
def remote_info(ctx):
    """Show remote URL, card URL and credential state."""
    name = ctx.obj.get("remote", DEFAULT_REMOTE)
    try:
        info = Repository.find().remote_info(name)
    except NitError as e:
        _fail(e)

    console.print(Panel(
        f"URL:        {info.url}\n"
        f"Card URL:   {info.card_url}\n"
        f"Agent ID:   [cyan]{info.agent_id}[/cyan]\n"
        f"Credential: {'✓' if info.has_credential else '✗'}",
        title=f"remote {info.name}",
    ))


@remote.command("set-credential")
@click.argument("credential")
@click.pass_context
def remote_set_credential(ctx, credential: str):
    """Store a credential for the remote in .nit/config."""
    name = ctx.obj.get("remote", DEFAULT_REMOTE)
    try:
        repo = Repository.find()
    except NitError as e:
        _fail(e)

    set_remote_credential(repo.nit_dir, name, credential)
    console.print(f"[green]✓[/green] Credential set for remote {name}")


@remote.command("branches")
@click.pass_context
def remote_branches(ctx):
    """List branches pushed to the remote."""
    name = ctx.obj.get("remote", DEFAULT_REMOTE)
    try:
        with Repository.find().remote_client(name) as client:
            branches = client.list_remote_branches()
    except NitError as e:
        _fail(e)

    if not branches:
        console.print("[yellow]No branches pushed yet[/yellow]")
        return

    table = Table(title=f"Remote branches ({name})")
    table.add_column("Branch", style="cyan")
    table.add_column("Commit")
    table.add_column("Pushed at")
    for b in branches:
        table.add_row(b.name, _short(b.commit_hash), str(b.pushed_at or ""))
    console.print(table)


@remote.command("delete")
@click.argument("branch_name")
@click.pass_context
def remote_delete(ctx, branch_name: str):
    """Delete a branch from the remote."""
    name = ctx.obj.get("remote", DEFAULT_REMOTE)
    try:
        with Repository.find().remote_client(name) as client:
            client.delete_remote_branch(branch_name)
    except NitError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Deleted {branch_name} from {name}")


@cli.command()
@click.argument("branch_name", default=MAIN_BRANCH)
@click.option("--card-url", default=None, help="Agent card URL (default: this agent's)")
def fetch(branch_name: str, card_url: Optional[str]):
    """Fetch a branch card from an agent's card URL."""
    try:
        card = Repository.find().fetch(branch_name, card_url=card_url)
    except NitError as e:
        _fail(e)

    click.echo(card.to_json())


# =============================================================================
# Login Commands
# =============================================================================

@cli.command("sign-login")
@click.argument("domain")
def sign_login(domain: str):
    """Sign a login payload bound to DOMAIN."""
    try:
        payload = Repository.find().sign_login(domain)
    except NitError as e:
        _fail(e)

    click.echo(payload.model_dump_json(indent=2))


@cli.command("verify-login")
@click.argument("payload_file", type=click.File("r"), default="-")
@click.option("--card-url", default=None, help="Verify locally against this card URL")
@click.option("--remote", "-r", default=DEFAULT_REMOTE, help="Remote to verify through")
def verify_login(payload_file, card_url: Optional[str], remote: str):
    """Verify a login payload (JSON file or stdin)."""
    try:
        payload = LoginPayload.model_validate_json(payload_file.read())
    except ValidationError as e:
        console.print(f"[red]error:[/red] invalid login payload: {escape(str(e))}")
        sys.exit(1)

    try:
        with Repository.find().remote_client(remote) as client:
            if card_url:
                client.verify_login_local(payload, card_url)
                result = {"verified": True, "agent_id": payload.agent_id, "domain": payload.domain}
            else:
                result = client.verify_login(payload)
    except NitError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Verified {payload.agent_id} for {payload.domain}")
    console.print_json(json.dumps(result))


# =============================================================================
# Server Commands
# =============================================================================

@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Server config file")
@click.option("--host", "-h", default=None, help="Host to bind to")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to")
def serve(config_path: Optional[str], host: Optional[str], port: Optional[int]):
    """Run the reference nit remote."""
    from .server import run_server

    config = load_server_config(config_path)
    if host:
        config.host = host
    if port:
        config.port = port

    console.print(Panel(
        f"[bold]nit remote v{__version__}[/bold]\n"
        f"Starting server on [cyan]http://{config.host}:{config.port}[/cyan]\n"
        f"Cards served at agent-<id>.{config.card_host}",
        title="Starting",
    ))
    run_server(config)


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
