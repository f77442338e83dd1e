"""Round watcher and once-per-round submission loop."""

import asyncio
import logging

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey

from .codec import decode_automation, decode_mask, decode_miner, encode_mask
from .config import AutomationParameters
from .errors import EncodingError, FetchError, MinerError, SignerDeclined, TransactionExpired
from .instructions import OreProgram
from .prices import PriceClient
from .rounds import RoundState, RoundStateClient
from .status import CycleStatus, Phase, StatusBoard
from .transactions import (
    ComputeBudgeter, SubmissionPipeline, TransactionAssembler, compute_limit,
)

logger = logging.getLogger(__name__)

REQ_ID_MODULUS = 100


def should_deploy(slots_left: int, threshold: int) -> bool:
    return slots_left <= threshold


class RequestSequenceCounter:
    """req_id for the refined instruction: 0..99, wraps, restarts each round."""

    def __init__(self):
        self.value = 0

    def advance(self) -> int:
        self.value = (self.value + 1) % REQ_ID_MODULUS
        return self.value

    def reset(self):
        self.value = 0


class AutoMiner:
    def __init__(self, rpc: AsyncClient, rounds: RoundStateClient, prices: PriceClient,
                 program: OreProgram, signer, authority: Pubkey,
                 params: AutomationParameters, reporters=(),
                 poll_interval: float = 1.0, sign_timeout: float = 120.0,
                 max_attempts_per_round: int = 3, commitment: Commitment = Confirmed):
        self.rpc = rpc
        self.rounds = rounds
        self.prices = prices
        self.program = program
        self.signer = signer
        self.authority = authority
        self.params = params
        self.poll_interval = poll_interval
        self.max_attempts_per_round = max_attempts_per_round
        self.commitment = commitment

        self.board = StatusBoard(reporters)
        self.assembler = TransactionAssembler(rpc, commitment)
        self.budgeter = ComputeBudgeter(rpc, commitment=commitment)
        self.pipeline = SubmissionPipeline(rpc, signer, self.board, sign_timeout=sign_timeout,
                                           commitment=commitment)
        self.counter = RequestSequenceCounter()

        self.last_round_id: int | None = None
        self.attempts = 0
        self.round_closed = False
        self._cycle_lock = asyncio.Lock()
        self._stopping: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    # Lifecycle

    async def start(self):
        if self._task is not None and not self._task.done():
            logger.warning("auto-miner already running")
            return
        self._stopping = asyncio.Event()
        self.board.update(is_running=True, phase=Phase.MONITORING, message="Auto-mining started")
        logger.info("auto-miner started, threshold=%d slots", self.params.slots_threshold)
        self._task = asyncio.create_task(self._loop())

    def stop(self):
        """Prevent further ticks. A cycle already in flight runs to completion."""
        if self._stopping is not None:
            self._stopping.set()
        self.board.update(is_running=False, message="Auto-mining stopped")

    async def wait(self):
        if self._task is not None:
            await self._task

    def get_status(self) -> CycleStatus:
        return self.board.current

    async def _loop(self):
        loop = asyncio.get_running_loop()
        while not self._stopping.is_set():
            started = loop.time()
            try:
                await self.tick()
            except Exception as e:
                logger.exception("tick failed")
                self.board.update(phase=Phase.ERROR, message=f"Error: {e}")
                self.board.error(e)
            delay = max(0.0, self.poll_interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("auto-miner stopped")

    # One iteration

    async def tick(self):
        self.board.update(phase=Phase.MONITORING, message="Checking round status...")
        try:
            state = await self.rounds.get_round_state()
        except FetchError as e:
            logger.warning("round state unavailable: %s", e)
            self.board.update(phase=Phase.ERROR, message=f"Failed to fetch round state: {e}")
            self.board.error(e)
            return

        if state.round_id != self.last_round_id:
            await self._new_round(state)

        ready = should_deploy(state.slots_left, self.params.slots_threshold)
        handled = self.round_closed or self.attempts >= self.max_attempts_per_round
        # READY is only published when a cycle is about to start.
        go = ready and not handled and state.slots_left > 0
        message = f"Round #{state.round_id}: {state.slots_left} slots left"
        if ready and handled:
            message += ", waiting for next round"
        elif ready and state.slots_left == 0:
            message += ", round is ending"
        elif ready:
            message += " - ready!"
        self.board.update(
            round_id=state.round_id,
            slots_left=state.slots_left,
            phase=Phase.READY if go else Phase.MONITORING,
            message=message,
        )
        if go:
            await self.run_cycle(state)

    async def _new_round(self, state: RoundState):
        logger.info("new round #%d (previous %s)", state.round_id, self.last_round_id)
        self.last_round_id = state.round_id
        self.counter.reset()
        self.attempts = 0
        self.round_closed = False
        self.board.update(round_id=state.round_id, req_id=0,
                          message=f"New round #{state.round_id}, fetching prices...")
        try:
            asset, base = await self.prices.get_cached_prices(force=True)
        except FetchError as e:
            logger.warning("price refresh failed: %s", e)
            self.board.error(e)
            return
        self.board.update(asset_price=asset, base_price=base)

    async def _current_prices(self) -> tuple[float, float]:
        quote = self.prices.quote
        if quote is None:
            asset, base = await self.prices.get_cached_prices()
            self.board.update(asset_price=asset, base_price=base)
            return asset, base
        return quote.asset_price, quote.base_price

    async def run_cycle(self, state: RoundState) -> str | None:
        """Build, budget and submit one transaction. Returns the signature on success."""
        async with self._cycle_lock:
            self.attempts += 1
            req_id = self.counter.advance()
            try:
                prices = await self._current_prices()
                self.board.update(
                    req_id=req_id,
                    message=f"Preparing transaction for round #{state.round_id} (req {req_id})...",
                )
                instructions = await self.build_instructions(state, prices, req_id)

                self.board.update(phase=Phase.SIMULATING, message="Simulating transaction...")
                utx = await self.assembler.assemble(instructions, self.authority)
                units = await self.budgeter.budget(utx)
                self.board.update(message=f"Compute budget: {units:,} units")
                signature = await self.pipeline.submit(utx.with_compute_limit(units))
            except (SignerDeclined, TransactionExpired) as e:
                self.round_closed = True
                self._fail(e)
                return None
            except MinerError as e:
                self._fail(e)
                return None

            self.round_closed = True
            self.board.transaction_sent(signature)
            return signature

    def _fail(self, error: Exception):
        logger.warning("cycle failed: %s", error)
        self.board.update(phase=Phase.ERROR, message=f"Error: {error}")
        self.board.error(error)

    async def build_instructions(self, state: RoundState, prices: tuple[float, float],
                                 req_id: int) -> list:
        """Checkpoint (if owed), then the primary action, then the SOL claim."""
        p = self.params
        me = self.authority
        instructions = []
        if p.strategy == "refined":
            asset_price, base_price = prices
            instructions.append(self.program.refined(
                me, state.round_id, asset_price, base_price,
                p.deploy_amount, p.slots_threshold, p.refine_rate, req_id,
            ))
        else:
            miner = await self.read_miner()
            if miner is not None and miner["checkpoint_id"] != miner["round_id"]:
                logger.info("checkpointing round #%d", miner["round_id"])
                instructions.append(self.program.checkpoint(me, me, miner["round_id"]))
            instructions.append(self.program.deploy(
                me, me, p.deploy_amount, state.round_id, list(p.squares),
            ))
        if p.claim_sol:
            instructions.append(self.program.claim_sol(me))
        return instructions

    # Accounts

    async def _account_data(self, address: Pubkey) -> bytes | None:
        try:
            resp = await self.rpc.get_account_info(address, commitment=self.commitment)
        except (SolanaRpcException, RPCException) as e:
            raise FetchError(FetchError.NETWORK, f"getAccountInfo {address}: {e}") from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def read_miner(self) -> dict | None:
        data = await self._account_data(self.program.miner_pda(self.authority)[0])
        return decode_miner(data) if data is not None else None

    async def read_automation(self) -> dict | None:
        data = await self._account_data(self.program.automation_pda(self.authority)[0])
        return decode_automation(data) if data is not None else None

    # One-off operations

    async def dry_run(self) -> dict:
        """Build and budget the transaction this round would get, without signing it."""
        state = await self.rounds.get_round_state()
        prices = await self.prices.get_cached_prices()
        req_id = (self.counter.value + 1) % REQ_ID_MODULUS
        instructions = await self.build_instructions(state, prices, req_id)
        utx = await self.assembler.assemble(instructions, self.authority)
        try:
            units_consumed = await self.budgeter.simulate(utx)
            sim_error = None
        except MinerError as e:
            units_consumed, sim_error = None, str(e)
        units = compute_limit(units_consumed, self.budgeter.floor) if units_consumed else self.budgeter.floor
        return {
            "round_id": state.round_id,
            "slots_left": state.slots_left,
            "ore_price": prices[0],
            "sol_price": prices[1],
            "req_id": req_id,
            "instructions": [
                {"program": str(ix.program_id), "accounts": len(ix.accounts), "data": bytes(ix.data).hex()}
                for ix in instructions
            ],
            "units_consumed": units_consumed,
            "simulation_error": sim_error,
            "compute_units": units,
        }

    async def _submit_one(self, instruction, label: str) -> str:
        utx = await self.assembler.assemble([instruction], self.authority)
        self.board.update(phase=Phase.SIMULATING, message=f"Simulating {label}...")
        units = await self.budgeter.budget(utx)
        signature = await self.pipeline.submit(utx.with_compute_limit(units))
        self.board.transaction_sent(signature)
        return signature

    async def claim(self) -> str:
        """Send a ClaimSOL transaction through the same pipeline."""
        return await self._submit_one(self.program.claim_sol(self.authority), "claim")

    async def automate(self, amount: int, squares, deposit: int = 0, fee: int = 0,
                       executor: Pubkey | None = None, strategy: int = 0) -> str:
        """Hand mining over to an on-chain executor.

        `amount` is lamports per square each round, `deposit` is moved into the
        automation balance now, `fee` is what the executor takes per round.
        The executor defaults to the authority itself.
        """
        squares = list(squares)
        if not any(squares):
            raise EncodingError("automation needs at least one square")
        instruction = self.program.automate(
            self.authority, amount, deposit, executor if executor is not None else self.authority,
            fee, encode_mask(squares), strategy,
        )
        logger.info("automating %d lamports on %d squares, deposit %d",
                    amount, sum(1 for s in squares if s), deposit)
        return await self._submit_one(instruction, "automation")

    async def stop_automation(self) -> str:
        """Close automation: executor cleared, every amount zeroed."""
        instruction = self.program.automate(self.authority, 0, 0, Pubkey.default(), 0, 0, 0)
        return await self._submit_one(instruction, "automation stop")

    async def status(self) -> dict:
        info = {
            "authority": str(self.authority),
            "miner_address": str(self.program.miner_pda(self.authority)[0]),
            "automation_address": str(self.program.automation_pda(self.authority)[0]),
            "treasury": str(self.program.treasury_address()),
        }
        try:
            state = await self.rounds.get_round_state()
            info["round_id"] = state.round_id
            info["slots_left"] = state.slots_left
        except FetchError as e:
            info["round_error"] = str(e)
        try:
            info["ore_price"], info["sol_price"] = await self.prices.get_cached_prices()
        except FetchError as e:
            info["price_error"] = str(e)

        info["miner"] = await self.read_miner()
        automation = await self.read_automation()
        if automation is not None:
            mask = automation["mask"]
            automation["squares"] = [i for i, s in enumerate(decode_mask(mask & 0x1FFFFFF)) if s]
        info["automation"] = automation
        return info
