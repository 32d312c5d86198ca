#!/usr/bin/env python3
"""
PrivyBallot CLI

Command-line front end for confidential proposals.

Usage:
    privyballot proposals [--account ACCOUNT] [--light] [--json]
    privyballot status <id> [--account ACCOUNT]
    privyballot create <title> <description> --duration {5m,30m,1h,1d,1w} --account ACCOUNT
    privyballot vote <id> {yes,no} --account ACCOUNT
    privyballot reveal <id> --account ACCOUNT [--wait]
    privyballot delete <id> --account ACCOUNT
    privyballot reset --account ACCOUNT
    privyballot mapping <content_address>
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import click

from ..codec import IdentifierCodec, field_to_hex
from ..config import ClientConfig, load_config
from ..constants import DURATION_PRESETS, VALID_ACCOUNT_PATTERN
from ..exceptions import LedgerRejection, PrivyBallotException
from ..logger import configure_logging
from ..models import ProposalMetadata, ProposalPhase, ProposalView, RevealResult, SyncMode
from ..overlay import LocalOverlayStore
from ..session import BallotSession

T = TypeVar("T")

PHASE_COLORS = {
    ProposalPhase.VOTING: "green",
    ProposalPhase.AWAITING_REVEAL: "yellow",
    ProposalPhase.DECRYPTION_PENDING: "magenta",
    ProposalPhase.REVEALED: "cyan",
}


def format_address(address: str, short: bool = False) -> str:
    """Format address for display."""
    if short and len(address) > 20:
        return f"{address[:10]}...{address[-8:]}"
    return address


def format_deadline(deadline: int) -> str:
    return datetime.fromtimestamp(deadline, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def validate_account(ctx, param, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not VALID_ACCOUNT_PATTERN.match(value):
        raise click.BadParameter(f"not a 0x-prefixed 20-byte address: {value}")
    return value.lower()


def account_option(required: bool = True):
    return click.option(
        "--account", "-a",
        envvar="PRIVYBALLOT_ACCOUNT",
        required=required,
        callback=validate_account,
        help="Account address (env: PRIVYBALLOT_ACCOUNT)",
    )


def run_session(config: ClientConfig, action: Callable[[BallotSession], Awaitable[T]]) -> T:
    """Open a session, run `action` and close it, mapping library errors to CLI errors."""

    async def runner() -> T:
        session = await BallotSession.open(config)
        try:
            return await action(session)
        finally:
            await session.close()

    try:
        return asyncio.run(runner())
    except LedgerRejection as e:
        raise click.ClickException(f"Rejected by the ledger: {e.message}")
    except PrivyBallotException as e:
        raise click.ClickException(str(e))


def print_header(title: str):
    click.echo()
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo(click.style(f"{title:^39}", fg="cyan", bold=True))
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo()


def print_proposal(view: ProposalView, detailed: bool = False):
    phase = view.phase()
    click.echo(
        click.style(f"#{view.id} ", bold=True)
        + view.title
        + "  "
        + click.style(f"[{phase.value}]", fg=PHASE_COLORS[phase])
    )
    click.echo(f"  Creator:  {format_address(view.creator, short=not detailed)}")
    click.echo(f"  Deadline: {format_deadline(view.deadline)}")
    if view.has_voted:
        click.echo(click.style("  You voted", fg="green"))
    if view.revealed:
        click.echo(f"  Result:   {view.yes_count} yes / {view.no_count} no")
    if view.metadata is None:
        reason = view.unresolved_reason.value if view.unresolved_reason else "unreachable"
        click.echo(click.style(f"  Metadata unavailable ({reason})", fg="yellow"))
    elif detailed:
        click.echo(f"  Description: {view.metadata.description}")
        click.echo(f"  Options:     {', '.join(view.metadata.options)}")
        if view.metadata.tags:
            click.echo(f"  Tags:        {', '.join(sorted(view.metadata.tags))}")
    if detailed:
        click.echo(f"  Content:  {view.content_address or '-'}")
        click.echo(f"  Field:    {field_to_hex(view.on_chain_field)}")
    click.echo()


@click.group()
@click.version_option(version="0.1.0", prog_name="privyballot")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to privyballot.toml")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: Optional[str]):
    """PrivyBallot Command Line Interface

    Create confidential proposals, cast encrypted votes and reveal tallies.
    """
    config = load_config(config_path)
    if log_level:
        config.logging.level = log_level.upper()
    configure_logging(log_level=config.logging.level)
    ctx.obj = config


@cli.command("proposals")
@account_option(required=False)
@click.option("--light", is_flag=True, help="Status only, no metadata fetches")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def proposals_cmd(config: ClientConfig, account: Optional[str], light: bool, as_json: bool):
    """List proposals, newest first.

    Examples:

        privyballot proposals --account 0xf39f...

        privyballot proposals --light --json
    """
    mode = SyncMode.LIGHTWEIGHT_STATUS_ONLY if light else SyncMode.FULL
    report = run_session(config, lambda session: session.sync(account, mode))

    if not report.ok:
        message = f"No data ({report.status.value}): {report.reason}"
        if report.retry_after:
            message += f", retry in {report.retry_after:.1f}s"
        raise click.ClickException(message)

    if as_json:
        click.echo(json.dumps([view.to_dict() for view in report.proposals], indent=2))
        return

    print_header("Proposals")
    if not report.proposals:
        click.echo("No proposals yet.")
        return
    for view in report.proposals:
        print_proposal(view)


@cli.command("status")
@click.argument("proposal_id", type=int)
@account_option(required=False)
@click.pass_obj
def status_cmd(config: ClientConfig, proposal_id: int, account: Optional[str]):
    """Show one proposal in detail."""
    report = run_session(config, lambda session: session.sync(account))
    if not report.ok:
        raise click.ClickException(f"No data ({report.status.value}): {report.reason}")

    for view in report.proposals:
        if view.id == proposal_id:
            print_header(f"Proposal #{proposal_id}")
            print_proposal(view, detailed=True)
            return
    raise click.ClickException(f"Proposal #{proposal_id} not found")


@cli.command("create")
@click.argument("title")
@click.argument("description")
@click.option(
    "--duration", "-d",
    type=click.Choice(list(DURATION_PRESETS)),
    default="1h",
    help="Voting period",
)
@click.option("--option", "options", multiple=True, help="Answer label (repeat; default Yes/No)")
@click.option("--tag", "tags", multiple=True, help="Tag (repeat)")
@account_option()
@click.pass_obj
def create_cmd(
    config: ClientConfig,
    title: str,
    description: str,
    duration: str,
    options: Tuple[str, ...],
    tags: Tuple[str, ...],
    account: str,
):
    """Create a proposal.

    Examples:

        privyballot create "Fund the meetup" "Spend 500 on venue" --duration 1d -a 0xf39f...
    """
    try:
        metadata = ProposalMetadata(
            title=title,
            description=description,
            options=list(options) or ["Yes", "No"],
            creator=account,
            tags=frozenset(tags),
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    handle = run_session(
        config,
        lambda session: session.coordinator.create_proposal(metadata, DURATION_PRESETS[duration], account),
    )
    click.echo(click.style(f"✓ Proposal #{handle.proposal_id} created", fg="green", bold=True))
    click.echo(f"  Transaction: {handle.tx_hash}")


@cli.command("vote")
@click.argument("proposal_id", type=int)
@click.argument("choice", type=click.Choice(["yes", "no"], case_sensitive=False))
@account_option()
@click.pass_obj
def vote_cmd(config: ClientConfig, proposal_id: int, choice: str, account: str):
    """Cast an encrypted vote."""
    handle = run_session(
        config,
        lambda session: session.coordinator.vote(proposal_id, choice, account),
    )
    click.echo(click.style(f"✓ Vote submitted on proposal #{proposal_id}", fg="green", bold=True))
    click.echo(f"  Transaction: {handle.tx_hash}")


@cli.command("reveal")
@click.argument("proposal_id", type=int)
@account_option()
@click.option("--wait", "-w", is_flag=True, help="Poll until the tally is public")
@click.pass_obj
def reveal_cmd(config: ClientConfig, proposal_id: int, account: str, wait: bool):
    """Request the reveal of a closed proposal."""

    async def action(session: BallotSession):
        handle = await session.coordinator.request_reveal(proposal_id, account)
        outcome = await session.coordinator.poll_until_revealed(proposal_id) if wait else None
        return handle, outcome

    handle, outcome = run_session(config, action)

    if handle.already_applied:
        click.echo(click.style(f"Reveal of proposal #{proposal_id} was already requested", fg="yellow"))
    else:
        click.echo(click.style(f"✓ Reveal requested for proposal #{proposal_id}", fg="green", bold=True))
        click.echo(f"  Transaction: {handle.tx_hash}")

    if outcome is None:
        return
    if isinstance(outcome, RevealResult):
        click.echo()
        click.echo(click.style("Result:", fg="cyan", bold=True))
        click.echo(f"  Yes: {outcome.yes_count}")
        click.echo(f"  No:  {outcome.no_count}")
    else:
        state = "decryption still pending" if outcome.decryption_pending else "not revealed yet"
        click.echo(click.style(
            f"Still processing after {outcome.attempts} checks ({state}), try again later", fg="yellow"
        ))


@cli.command("delete")
@click.argument("proposal_id", type=int)
@account_option()
@click.pass_obj
def delete_cmd(config: ClientConfig, proposal_id: int, account: str):
    """Hide a proposal from your list.

    The proposal stays on the ledger. Metadata of your own proposals is
    also unpinned.
    """

    async def action(session: BallotSession) -> bool:
        report = await session.sync(account, SyncMode.LIGHTWEIGHT_STATUS_ONLY)
        content_address = None
        for view in report.proposals:
            if view.id == proposal_id and view.creator == account:
                content_address = view.content_address
        return await session.coordinator.delete_proposal(proposal_id, account, content_address)

    unpinned = run_session(config, action)
    click.echo(click.style(f"✓ Proposal #{proposal_id} hidden for {format_address(account, short=True)}", fg="green"))
    if unpinned:
        click.echo("  Metadata unpinned")


@cli.command("reset")
@account_option()
@click.confirmation_option(prompt="This forgets every local vote and hidden proposal of the account. Continue?")
@click.pass_obj
def reset_cmd(config: ClientConfig, account: str):
    """Clear all local state of an account."""
    removed = run_session(config, lambda session: session.reset_account(account))
    click.echo(click.style("✓ Local state cleared", fg="green", bold=True))
    click.echo(f"  Votes removed:       {removed['votes']}")
    click.echo(f"  Deletions removed:   {removed['deletions']}")


@cli.command("mapping")
@click.argument("content_address")
@click.pass_obj
def mapping_cmd(config: ClientConfig, content_address: str):
    """Show the on-chain field for a content address.

    Addresses that do not fit the field are stored in the local mapping
    table as a side effect.
    """

    async def action() -> bytes:
        overlay = await LocalOverlayStore.create(config.overlay.path)
        try:
            return await IdentifierCodec(overlay).encode(content_address)
        finally:
            await overlay.close()

    try:
        field = asyncio.run(action())
    except PrivyBallotException as e:
        raise click.ClickException(str(e))

    direct = field.rstrip(b"\x00") == content_address.encode("utf-8")
    click.echo(f"Content address: {content_address}")
    click.echo(f"On-chain field:  {field_to_hex(field)}")
    click.echo(f"Encoding:        {'direct' if direct else 'digest (mapping stored locally)'}")


if __name__ == "__main__":
    cli()
