"""CLI entry point for ore-miner."""

import asyncio
import logging

import click
import httpx
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from .codec import parse_squares
from .config import MinerConfig, load_config, sol_to_lamports
from .errors import MinerError
from .instructions import OreProgram
from .miner import AutoMiner
from .prices import PriceClient
from .rounds import RoundStateClient
from .signer import KeypairSigner, PromptSigner, load_keypair
from .status import ConsoleReporter


def make_miner(rpc: AsyncClient, http: httpx.AsyncClient, config: MinerConfig,
               params, confirm_each: bool = False) -> AutoMiner:
    try:
        keypair = load_keypair(config.keypair)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot load keypair: {e}")
    signer = KeypairSigner(keypair)
    if confirm_each:
        signer = PromptSigner(signer, lambda question: click.confirm(question, default=True))
    program = OreProgram(
        program_id=config.program_id,
        entropy_program_id=config.entropy_program_id,
        refined_program_id=config.refined_program_id,
        treasury_address=config.treasury_address,
    )
    miner = AutoMiner(
        rpc,
        RoundStateClient(http, config.state_url),
        PriceClient(http, config.price_url),
        program,
        signer,
        signer.pubkey,
        params,
        poll_interval=config.poll_interval,
        sign_timeout=config.sign_timeout,
        max_attempts_per_round=config.max_attempts_per_round,
        commitment=config.commitment,
    )
    miner.board.subscribe(ConsoleReporter(click.echo))
    return miner


async def with_miner(ctx, action, **overrides):
    """Open the HTTP and RPC clients, build the miner, run `action(miner)`."""
    config: MinerConfig = ctx.obj["config"]
    if not config.rpc_url:
        raise click.ClickException("RPC URL required (--rpc or config rpc_url)")
    if not config.keypair:
        raise click.ClickException("Keypair required (--key or config keypair)")
    try:
        params = config.parameters(**overrides)
    except (MinerError, ValueError) as e:
        raise click.ClickException(str(e))

    async with httpx.AsyncClient(timeout=config.request_timeout) as http, \
            AsyncClient(config.rpc_url, commitment=config.commitment, timeout=config.request_timeout) as rpc:
        miner = make_miner(rpc, http, config, params, confirm_each=ctx.obj["confirm_each"])
        return await action(miner)


@click.group()
@click.option("--rpc", envvar="RPC_URL", default=None, help="Solana RPC URL")
@click.option("--key", envvar="KEYPAIR", default=None, help="Keypair file, JSON byte array or base58 secret")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to config.yaml")
@click.option("--state-url", envvar="STATE_URL", default=None, help="Round state endpoint")
@click.option("--price-url", envvar="PRICE_URL", default=None, help="Jupiter price endpoint")
@click.option("--confirm-each", is_flag=True, default=False, help="Ask before signing every transaction")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Debug logging")
@click.pass_context
def cli(ctx, rpc, key, config_path, state_url, price_url, confirm_each, verbose):
    """ORE auto-miner: submit once per round in its final slots."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config(config_path)
    for name, value in (("rpc_url", rpc), ("keypair", key),
                        ("state_url", state_url), ("price_url", price_url)):
        if value:
            cfg[name] = value
    ctx.ensure_object(dict)
    try:
        config = MinerConfig.from_dict(cfg)
    except ValueError as e:
        raise click.ClickException(str(e))
    ctx.obj["config"] = config
    ctx.obj["confirm_each"] = confirm_each or config.confirm_each


@cli.command()
@click.option("--amount", default=None, type=float, help="SOL to deploy per round (per square for --strategy deploy)")
@click.option("--slots", "slots_threshold", default=None, type=int, help="Submit when this many slots are left (default: 15)")
@click.option("--rate", "refine_rate", default=None, type=float, help="Refined ORE rate for the refined strategy (default: 1.0)")
@click.option("--strategy", default=None, type=click.Choice(["refined", "deploy"]), help="refined wrapper or direct deploy (default: refined)")
@click.option("--squares", default=None, help='Squares for direct deploy: "all" or "0,4,12"')
@click.option("--no-claim", "no_claim", is_flag=True, default=False, help="Do not append a ClaimSOL instruction")
@click.pass_context
def mine(ctx, amount, slots_threshold, refine_rate, strategy, squares, no_claim):
    """Run the auto-miner until Ctrl+C."""

    async def run(miner: AutoMiner):
        p = miner.params
        click.echo(f"Account:   {miner.authority}")
        click.echo(f"Strategy:  {p.strategy}, {p.deploy_amount / 1e9:.4f} SOL, last {p.slots_threshold} slots")
        click.echo("Running (Ctrl+C to stop)")
        await miner.start()
        try:
            await miner.wait()
        except asyncio.CancelledError:
            miner.stop()
            raise

    try:
        asyncio.run(with_miner(
            ctx, run,
            amount=amount, slots_threshold=slots_threshold, refine_rate=refine_rate,
            strategy=strategy, squares=squares, claim_sol=False if no_claim else None,
        ))
    except KeyboardInterrupt:
        click.echo("\nStopped.")


@cli.command()
@click.pass_context
def simulate(ctx):
    """Build and simulate this round's transaction without signing it."""
    try:
        info = asyncio.run(with_miner(ctx, lambda miner: miner.dry_run()))
    except MinerError as e:
        raise click.ClickException(str(e))

    click.echo(f"Round:            #{info['round_id']} ({info['slots_left']} slots left)")
    click.echo(f"Prices:           ORE ${info['ore_price']:.4f}, SOL ${info['sol_price']:.2f}")
    click.echo(f"Request id:       {info['req_id']}")
    for i, ix in enumerate(info["instructions"]):
        click.echo(f"  [{i}] {ix['program']} accounts={ix['accounts']} data={ix['data']}")
    if info["simulation_error"]:
        click.echo(f"Simulation:       FAILED ({info['simulation_error']})")
    else:
        click.echo(f"Units consumed:   {info['units_consumed']:,}")
    click.echo(f"Compute limit:    {info['compute_units']:,}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show round, prices, miner and automation accounts."""
    try:
        info = asyncio.run(with_miner(ctx, lambda miner: miner.status()))
    except MinerError as e:
        raise click.ClickException(str(e))

    click.echo(f"Authority:           {info['authority']}")
    click.echo(f"Miner account:       {info['miner_address']}")
    click.echo(f"Automation account:  {info['automation_address']}")
    click.echo(f"Treasury:            {info['treasury']}")
    if "round_id" in info:
        click.echo(f"Round:               #{info['round_id']} ({info['slots_left']} slots left)")
    else:
        click.echo(f"Round:               unavailable ({info['round_error']})")
    if "ore_price" in info:
        click.echo(f"Prices:              ORE ${info['ore_price']:.4f}, SOL ${info['sol_price']:.2f}")
    else:
        click.echo(f"Prices:              unavailable ({info['price_error']})")

    miner = info["miner"]
    if miner is None:
        click.echo("\nNo miner account yet.")
    else:
        click.echo(f"\nMiner round:         #{miner['round_id']} (checkpoint #{miner['checkpoint_id']})")
        click.echo(f"  Deployed:          {sum(miner['deployed']) / 1e9:.4f} SOL")
        click.echo(f"  Rewards SOL:       {miner['rewards_sol'] / 1e9:.6f} SOL")
        click.echo(f"  Rewards ORE:       {miner['rewards_ore'] / 1e11:.6f} ORE")
        click.echo(f"  Refined ORE:       {miner['refined_ore'] / 1e11:.6f} ORE")
        click.echo(f"  Lifetime SOL:      {miner['lifetime_rewards_sol'] / 1e9:.6f} SOL")
        click.echo(f"  Lifetime ORE:      {miner['lifetime_rewards_ore'] / 1e11:.6f} ORE")

    automation = info["automation"]
    if automation is None:
        click.echo("\nNo automation account.")
    else:
        click.echo(f"\nAutomation amount:   {automation['amount'] / 1e9:.4f} SOL")
        click.echo(f"  Balance:           {automation['balance'] / 1e9:.4f} SOL")
        click.echo(f"  Executor:          {automation['executor']}")
        click.echo(f"  Fee:               {automation['fee'] / 1e9:.6f} SOL")
        click.echo(f"  Strategy:          {automation['strategy']}")
        click.echo(f"  Squares:           {automation['squares']}")


@cli.command()
@click.pass_context
def claim(ctx):
    """Claim SOL rewards from the miner account."""
    try:
        signature = asyncio.run(with_miner(ctx, lambda miner: miner.claim()))
    except MinerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Claimed. Signature: {signature}")


@cli.command()
@click.option("--amount", required=True, type=float, help="SOL per selected square each round")
@click.option("--squares", default="all", help='Squares to mine: "all" or "0,4,12"')
@click.option("--deposit", default=0.0, type=float, help="SOL moved into the automation balance now")
@click.option("--fee", default=0.0, type=float, help="SOL paid to the executor per round")
@click.option("--executor", default=None, help="Executor pubkey (default: your own account)")
@click.pass_context
def automate(ctx, amount, squares, deposit, fee, executor):
    """Hand mining over to an on-chain executor."""
    try:
        flags = parse_squares(squares)
        executor_key = Pubkey.from_string(executor) if executor else None
    except ValueError as e:
        raise click.ClickException(str(e))

    def action(miner: AutoMiner):
        return miner.automate(
            sol_to_lamports(amount), flags,
            deposit=sol_to_lamports(deposit), fee=sol_to_lamports(fee),
            executor=executor_key,
        )

    try:
        signature = asyncio.run(with_miner(ctx, action))
    except MinerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Automation set. Signature: {signature}")


@cli.command("stop-automation")
@click.pass_context
def stop_automation(ctx):
    """Close the automation account and return its balance."""
    try:
        signature = asyncio.run(with_miner(ctx, lambda miner: miner.stop_automation()))
    except MinerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Automation stopped. Signature: {signature}")


if __name__ == "__main__":
    cli()
