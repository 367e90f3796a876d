#!/usr/bin/env python3
"""
polbridge CLI - POL token bridge between Ethereum Sepolia and Polygon Amoy

Commands:
- deposit [AMOUNT]   Sepolia -> Amoy (funds arrive in ~25 min)
- withdraw [AMOUNT]  Amoy -> Sepolia (checkpoint takes 90-180 min)
- check TX_HASH      One-shot checkpoint status for a burn
- exit TX_HASH       Wait for the proof of a burn and complete the exit
- finalize           Process pending exits for POL on Sepolia
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box
from rich.markup import escape

from polbridge.chain_client import ChainClient
from polbridge.config import BridgeConfig
from polbridge.deposit import DepositFlow
from polbridge.exceptions import (
    BridgeError,
    CheckpointTimeoutError,
    ConfigurationError,
    ExitFinalizationError,
    InsufficientBalanceError,
)
from polbridge.exit_processor import ExitProcessor
from polbridge.logging_config import setup_logging
from polbridge.models import (
    CheckpointStatus,
    ExitState,
    ProofLookup,
    TransferAmount,
    WithdrawalResult,
    WithdrawalState,
)
from polbridge.proof_service import ProofServiceClient, build_proof_url
from polbridge.withdrawal import WithdrawalOrchestrator

logger = logging.getLogger(__name__)

console = Console(soft_wrap=True)

DEFAULT_AMOUNT = "1"
PROG = "polbridge"


def _format_wei(wei: int, decimals: int) -> str:
    if wei <= 0:
        return "0"
    return TransferAmount(wei, decimals).format()


def _cli_fail(ctx: click.Context, exc: Exception, exit_code: int = 1) -> NoReturn:
    """Centralized CLI error handler. Always repeats the handles needed to resume."""
    logger.error("CLI error: %s", exc, exc_info=not isinstance(exc, BridgeError))
    details: dict[str, Any] = dict(getattr(exc, "details", {}) or {})
    obj = ctx.obj or {}

    if obj.get("json_output"):
        click.echo(json.dumps({"error": str(exc), "type": exc.__class__.__name__, "details": details}, indent=2, default=str))
        sys.exit(exit_code)

    message = str(exc)
    config: Optional[BridgeConfig] = obj.get("config")
    if isinstance(exc, InsufficientBalanceError) and config is not None:
        message = (
            f"Insufficient balance. Need {_format_wei(exc.required, config.token_decimals)} POL, "
            f"have {_format_wei(exc.available, config.token_decimals)} POL"
        )
    console.print(f"[bold red]Error:[/] {escape(message)}")

    burn_tx_hash = details.get("burn_tx_hash")
    if isinstance(exc, CheckpointTimeoutError):
        console.print(f"  Burn tx: [cyan]{exc.tx_hash}[/]")
        console.print(f"  Check again: [bold]{PROG} check {exc.tx_hash}[/]")
        console.print(f"  Resume: [bold]{PROG} exit {exc.tx_hash}[/]")
    elif isinstance(exc, ExitFinalizationError):
        if burn_tx_hash:
            console.print(f"  Burn tx: [cyan]{burn_tx_hash}[/]")
        console.print("  You can complete the exit manually using the proof:")
        console.print(f"  Proof data: {exc.proof}")
        console.print(f"  Retry finalization: [bold]{PROG} finalize[/]")
    elif burn_tx_hash:
        console.print(f"  Burn tx: [cyan]{burn_tx_hash}[/]")
        console.print(f"  Resume: [bold]{PROG} exit {burn_tx_hash}[/]")
    sys.exit(exit_code)


def _tx_link(explorer: str, tx_hash: str) -> str:
    return f"{explorer}/tx/{tx_hash}"


def _usage(command: str, argument: str) -> None:
    console.print("[bold red]Please provide transaction hash[/]")
    console.print(f"Usage: {PROG} {command} <{argument}>")


# ============================================================================
# Service construction
# ============================================================================

def build_root_chain(config: BridgeConfig) -> ChainClient:
    return ChainClient.connect(
        config.sepolia_rpc,
        config.private_key,
        "sepolia",
        receipt_timeout=config.receipt_timeout,
    )


def build_child_chain(config: BridgeConfig) -> ChainClient:
    return ChainClient.connect(
        config.amoy_rpc,
        config.private_key,
        "amoy",
        poa=True,
        receipt_timeout=config.receipt_timeout,
    )


def build_proof_service(config: BridgeConfig) -> ProofServiceClient:
    return ProofServiceClient(config.proof_api_url, config.proof_network, config.exit_event_signature)


def build_exit_processor(config: BridgeConfig) -> ExitProcessor:
    config.require("sepolia_rpc", "erc20_predicate", "withdraw_manager", "pol_sepolia")
    return ExitProcessor(
        build_root_chain(config), config.erc20_predicate, config.withdraw_manager, config.pol_sepolia
    )


def build_deposit_flow(config: BridgeConfig) -> DepositFlow:
    config.require("sepolia_rpc", "pol_sepolia", "deposit_manager")
    return DepositFlow(build_root_chain(config), config.pol_sepolia, config.deposit_manager)


def build_orchestrator(
    config: BridgeConfig,
    *,
    exits: bool = True,
    on_transition=None,
    on_attempt=None,
) -> WithdrawalOrchestrator:
    """Root-chain settings are only required when the pass may run an exit."""
    config.require("amoy_rpc")
    exit_processor = build_exit_processor(config) if exits else None
    return WithdrawalOrchestrator(
        build_child_chain(config),
        build_proof_service(config),
        exit_processor,
        config,
        on_transition=on_transition,
        on_attempt=on_attempt,
    )


# ============================================================================
# Progress rendering
# ============================================================================

class WithdrawalReporter:
    """Prints state machine progress for humans. Silent in JSON mode."""

    def __init__(self, config: BridgeConfig, quiet: bool = False) -> None:
        self.config = config
        self.quiet = quiet

    def _amoy_tx(self, tx_hash: str) -> str:
        return _tx_link(self.config.amoy_explorer, tx_hash)

    def _sepolia_tx(self, tx_hash: str) -> str:
        return _tx_link(self.config.sepolia_explorer, tx_hash)

    def _proof_url(self, tx_hash: str) -> str:
        config = self.config
        return build_proof_url(config.proof_api_url, config.proof_network, tx_hash, config.exit_event_signature)

    def on_attempt(self, attempt: int, max_attempts: int, lookup: ProofLookup) -> None:
        if self.quiet:
            return
        if lookup.status is CheckpointStatus.PENDING:
            console.print(f"   Attempt {attempt}/{max_attempts} - not checkpointed yet, waiting {self.config.poll_interval:.0f}s")
        elif lookup.status is CheckpointStatus.UNAVAILABLE:
            console.print(f"   Attempt {attempt}/{max_attempts} - [yellow]{escape(lookup.error or '')}[/], retrying")

    def on_transition(self, state: WithdrawalState, result: WithdrawalResult) -> None:
        if self.quiet:
            return
        if state is WithdrawalState.BURNING and result.amount is not None:
            console.print(f"Withdrawing {result.amount} POL")
            console.print("1) Calling withdraw function on POL contract…")
        elif state is WithdrawalState.BURNED and result.burn_tx is not None:
            tx_hash = result.burn_tx_hash
            console.print(f"  [green]✔[/] Burn: {self._amoy_tx(tx_hash)}")
            console.print("2) Waiting for checkpoint inclusion...")
            console.print("   This can take 90-180 minutes on testnet")
            console.print("\nNext steps after checkpoint:")
            console.print(f"1. Generate proof from: {self._proof_url(tx_hash)}")
            console.print("2. Use the proof with ERC20 Predicate contract on Sepolia")
            console.print("3. Process exit to complete withdrawal")
        elif state is WithdrawalState.MANUAL_HANDOFF:
            console.print("\nSet AUTO_COMPLETE=true in .env to enable automated completion")
            console.print(f"Check status: [bold]{PROG} check {result.burn_tx_hash}[/]")
            console.print(f"Complete exit: [bold]{PROG} exit {result.burn_tx_hash}[/]")
        elif state is WithdrawalState.POLLING_CHECKPOINT:
            console.print(f"Polling checkpoint status for {result.burn_tx_hash}...")
        elif state is WithdrawalState.CHECKPOINTED and result.proof is not None:
            console.print("[green]Transaction checkpointed![/] Proof generated successfully.")
            console.print(f"   Proof data length: {len(result.proof)}")
            console.print("3) Processing exit on Sepolia...")
        elif state is WithdrawalState.EXITING_STARTED and result.exit is not None:
            if result.exit.state is ExitState.ALREADY_STARTED:
                console.print("  Exit already started for this transaction, proceeding to finalize...")
            elif result.exit.start_exit_tx is not None:
                console.print(f"  [green]✔[/] StartExit: {self._sepolia_tx(result.exit.start_exit_tx.tx_hash)}")
        elif state is WithdrawalState.EXITING_PROCESSED and result.exit is not None:
            if result.exit.process_exits_tx is not None:
                console.print(f"  [green]✔[/] ProcessExit: {self._sepolia_tx(result.exit.process_exits_tx.tx_hash)}")
        elif state is WithdrawalState.DONE:
            console.print("[bold green]POL tokens released on Sepolia![/]")


def _parse_amount(ctx: click.Context, amount: Optional[str]) -> TransferAmount:
    config: BridgeConfig = ctx.obj["config"]
    try:
        return TransferAmount.parse(amount or DEFAULT_AMOUNT, config.token_decimals)
    except BridgeError as exc:
        _cli_fail(ctx, exc)


def _interrupted(burn_tx_hash: Optional[str]) -> NoReturn:
    console.print("\n[yellow]Operation cancelled by user[/]")
    if burn_tx_hash:
        console.print(f"Resume later with: [bold]{PROG} exit {burn_tx_hash}[/]")
    sys.exit(130)


# ============================================================================
# CLI Group
# ============================================================================

@click.group()
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Load configuration from this .env file instead of ./.env",
)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    envvar="POLBRIDGE_LOG_LEVEL",
    show_default=True,
    help="Structured log level (JSON lines on stderr)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    envvar="POLBRIDGE_LOG_FILE",
    help="Also write JSON logs to this file (rotated)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    env_file: Optional[Path],
    json_output: bool,
    log_level: str,
    log_file: Optional[str],
):
    """
    POL token bridge between Ethereum Sepolia and Polygon Amoy.

    Withdrawals are resumable: keep the burn transaction hash and use
    `check` / `exit` from any later invocation.
    """
    ctx.ensure_object(dict)
    ctx.obj["json_output"] = json_output
    setup_logging(level=log_level, log_file=log_file)
    try:
        ctx.obj["config"] = BridgeConfig.from_env(env_file=env_file)
    except ConfigurationError as exc:
        _cli_fail(ctx, exc)
    logger.debug("Configuration: %s", ctx.obj["config"].redacted(), extra={"event": "cli.config"})


@cli.command("deposit")
@click.argument("amount", required=False)
@click.pass_context
def deposit(ctx: click.Context, amount: Optional[str]):
    """Deposit POL from Sepolia to Amoy (default 1 POL)."""
    config: BridgeConfig = ctx.obj["config"]
    json_output = ctx.obj["json_output"]
    transfer = _parse_amount(ctx, amount)

    try:
        flow = build_deposit_flow(config)
        if not json_output:
            console.print(f"Depositing {transfer} POL")
            console.print("1) Approving DepositManager and 2) depositERC20ForUser on Sepolia…")
        result = flow.deposit(transfer)
    except BridgeError as exc:
        _cli_fail(ctx, exc)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Amount", f"{transfer} POL")
    table.add_row("[bold cyan]Approval", _tx_link(config.sepolia_explorer, result.approve_tx.tx_hash))
    table.add_row("[bold cyan]Deposit", _tx_link(config.sepolia_explorer, result.deposit_tx.tx_hash))
    console.print(Panel(table, title="[bold green]Deposit confirmed", border_style="green"))
    console.print("Funds will arrive on Amoy in ~25 min.")


@cli.command("withdraw")
@click.argument("amount", required=False)
@click.pass_context
def withdraw(ctx: click.Context, amount: Optional[str]):
    """Withdraw POL from Amoy to Sepolia (default 1 POL)."""
    config: BridgeConfig = ctx.obj["config"]
    json_output = ctx.obj["json_output"]
    transfer = _parse_amount(ctx, amount)
    reporter = WithdrawalReporter(config, quiet=json_output)
    burned: dict[str, str] = {}

    def on_transition(state: WithdrawalState, result: WithdrawalResult) -> None:
        if result.burn_tx_hash:
            burned["tx_hash"] = result.burn_tx_hash
        reporter.on_transition(state, result)

    try:
        with build_orchestrator(
            config, exits=config.auto_complete, on_transition=on_transition, on_attempt=reporter.on_attempt
        ) as orchestrator:
            result = orchestrator.withdraw(transfer)
    except BridgeError as exc:
        _cli_fail(ctx, exc)
    except KeyboardInterrupt:
        _interrupted(burned.get("tx_hash"))

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.state is WithdrawalState.DONE:
        console.print("[bold green]Automatic withdrawal completed![/]")


@cli.command("check")
@click.argument("tx_hash", required=False)
@click.pass_context
def check(ctx: click.Context, tx_hash: Optional[str]):
    """One-shot checkpoint status for a burn transaction."""
    if not tx_hash or not tx_hash.strip():
        _usage("check", "transaction_hash")
        return
    config: BridgeConfig = ctx.obj["config"]

    with build_proof_service(config) as proofs:
        lookup = proofs.lookup(tx_hash)
        proof_url = proofs.proof_url(lookup.tx_hash)

    if ctx.obj["json_output"]:
        payload = lookup.to_dict()
        payload["proof_url"] = proof_url
        payload["proof"] = lookup.proof.payload if lookup.proof else None
        click.echo(json.dumps(payload, indent=2))
        return

    console.print(f"Checking checkpoint status for: {lookup.tx_hash}")
    tx_link = _tx_link(config.amoy_explorer, lookup.tx_hash)
    if lookup.status is CheckpointStatus.CHECKPOINTED:
        console.print("[bold green]Transaction is checkpointed![/]")
        console.print(f"Proof data length: {len(lookup.proof)}")
        console.print("\nLinks:")
        console.print(f"   Transaction: {tx_link}")
        console.print(f"   Proof API: {proof_url}")
        console.print("\nReady to complete exit? Run:")
        console.print(f"   [bold]{PROG} exit {lookup.tx_hash}[/]")
    elif lookup.status is CheckpointStatus.PENDING:
        console.print("[yellow]Transaction not yet checkpointed[/]")
        console.print("Current status: Waiting for checkpoint inclusion")
        console.print("\nLinks:")
        console.print(f"   Transaction: {tx_link}")
        console.print(f"   Check again: {PROG} check {lookup.tx_hash}")
    else:
        console.print(f"[yellow]Proof API unavailable:[/] {escape(lookup.error or '')}")
        console.print(f"   Check again: {PROG} check {lookup.tx_hash}")


@cli.command("exit")
@click.argument("tx_hash", required=False)
@click.pass_context
def exit_(ctx: click.Context, tx_hash: Optional[str]):
    """Wait for a burn's proof, then start and process the exit."""
    if not tx_hash or not tx_hash.strip():
        _usage("exit", "transaction_hash")
        return
    config: BridgeConfig = ctx.obj["config"]
    json_output = ctx.obj["json_output"]
    reporter = WithdrawalReporter(config, quiet=json_output)

    if not json_output:
        console.print(f"Completing exit for: {tx_hash}")
    try:
        with build_orchestrator(
            config, on_transition=reporter.on_transition, on_attempt=reporter.on_attempt
        ) as orchestrator:
            result = orchestrator.exit(tx_hash)
    except BridgeError as exc:
        exc.details.setdefault("burn_tx_hash", tx_hash)
        _cli_fail(ctx, exc)
    except KeyboardInterrupt:
        _interrupted(tx_hash)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print("[bold green]Exit completed successfully![/]")


@cli.command("finalize")
@click.pass_context
def finalize(ctx: click.Context):
    """Process pending POL exits on the Sepolia withdraw manager."""
    config: BridgeConfig = ctx.obj["config"]
    json_output = ctx.obj["json_output"]
    if not json_output:
        console.print("Finalizing exits after challenge period...")
    try:
        record = build_exit_processor(config).finalize_exit()
    except BridgeError as exc:
        if not json_output:
            console.print("Make sure the challenge period has passed and an exit was started")
        _cli_fail(ctx, exc)

    if json_output:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return
    console.print(f"  [green]✔[/] ProcessExit: {_tx_link(config.sepolia_explorer, record.tx_hash)}")
    console.print("[bold green]All eligible POL tokens have been released on Sepolia![/]")


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main CLI entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
