"""Assemble, budget, sign, send and confirm ORE transactions."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import (
    SignerDeclined, SimulationError, SubmissionError, TransactionExpired,
)
from .status import Phase, StatusBoard

logger = logging.getLogger(__name__)

DEFAULT_COMPUTE_UNITS = 200_000
SEND_ATTEMPTS = 3


def compute_limit(units_consumed: int, floor: int = DEFAULT_COMPUTE_UNITS) -> int:
    """Simulated units plus 10%, never below the floor."""
    return max(floor, units_consumed * 11 // 10)


@dataclass(frozen=True)
class UnsignedTransaction:
    """Instructions plus the blockhash they were assembled against.

    The blockhash is the freshness token: signing, sending and confirming all
    use this one, and it stops being valid after last_valid_block_height.
    """
    instructions: tuple[Instruction, ...]
    fee_payer: Pubkey
    blockhash: Hash
    last_valid_block_height: int
    compute_units: int | None = None

    def with_compute_limit(self, units: int) -> "UnsignedTransaction":
        return replace(self, compute_units=units)

    @property
    def ordered_instructions(self) -> list[Instruction]:
        ixs = list(self.instructions)
        if self.compute_units is not None:
            ixs.insert(0, set_compute_unit_limit(self.compute_units))
        return ixs

    def message(self) -> Message:
        return Message.new_with_blockhash(self.ordered_instructions, self.fee_payer, self.blockhash)

    def transaction(self) -> Transaction:
        return Transaction.new_unsigned(self.message())


class TransactionAssembler:
    def __init__(self, rpc: AsyncClient, commitment: Commitment = Confirmed):
        self.rpc = rpc
        self.commitment = commitment

    async def assemble(self, instructions, fee_payer: Pubkey) -> UnsignedTransaction:
        """Attach a blockhash fetched right now. Instruction order is kept as given."""
        try:
            resp = await self.rpc.get_latest_blockhash(self.commitment)
        except (SolanaRpcException, RPCException) as e:
            raise SubmissionError(f"Could not fetch latest blockhash: {e}") from e
        latest = resp.value
        return UnsignedTransaction(
            tuple(instructions), fee_payer,
            latest.blockhash, latest.last_valid_block_height,
        )


class ComputeBudgeter:
    """Size the compute-unit limit from a dry run."""

    def __init__(self, rpc: AsyncClient, floor: int = DEFAULT_COMPUTE_UNITS,
                 commitment: Commitment = Confirmed):
        self.rpc = rpc
        self.floor = floor
        self.commitment = commitment

    async def simulate(self, utx: UnsignedTransaction) -> int:
        """Units consumed by a signature-less simulation."""
        try:
            resp = await self.rpc.simulate_transaction(
                utx.transaction(), sig_verify=False, commitment=self.commitment,
            )
        except (SolanaRpcException, RPCException) as e:
            raise SimulationError(f"simulateTransaction failed: {e}") from e
        result = resp.value
        if result.err is not None:
            logs = list(result.logs or [])[-5:]
            raise SimulationError(f"Simulation error {result.err}; logs tail: {logs}")
        if not result.units_consumed:
            raise SimulationError("Simulation reported no units consumed")
        return result.units_consumed

    async def budget(self, utx: UnsignedTransaction) -> int:
        """compute_limit() of the simulation, or the floor if it fails."""
        try:
            units = await self.simulate(utx)
        except SimulationError as e:
            logger.warning("using default compute limit %d: %s", self.floor, e)
            return self.floor
        return compute_limit(units, self.floor)


class SubmissionPipeline:
    """WaitingApproval -> Sending -> Confirming -> Success for one transaction."""

    def __init__(self, rpc: AsyncClient, signer, board: StatusBoard,
                 sign_timeout: float = 120.0, send_attempts: int = SEND_ATTEMPTS,
                 retry_delay: float = 0.5, commitment: Commitment = Confirmed):
        self.rpc = rpc
        self.signer = signer
        self.board = board
        self.sign_timeout = sign_timeout
        self.send_attempts = send_attempts
        self.retry_delay = retry_delay
        self.commitment = commitment

    async def sign(self, utx: UnsignedTransaction) -> Transaction:
        """Hand the transaction to the external signer. Never retried."""
        try:
            signed = self.signer(utx.transaction())
            if inspect.isawaitable(signed):
                signed = await asyncio.wait_for(signed, self.sign_timeout)
        except SignerDeclined:
            raise
        except asyncio.TimeoutError:
            raise SignerDeclined(f"Signer did not respond within {self.sign_timeout:.0f}s") from None
        except Exception as e:
            raise SignerDeclined(f"Signer rejected the transaction: {e}") from e
        if signed is None:
            raise SignerDeclined("Signer returned no transaction")
        return signed

    async def send(self, signed: Transaction) -> Signature:
        """Broadcast, retrying transport failures only. No re-sign, no re-simulate."""
        opts = TxOpts(
            skip_preflight=False,
            preflight_commitment=self.commitment,
            max_retries=self.send_attempts,
        )
        raw = bytes(signed)
        last_error = None
        for attempt in range(1, self.send_attempts + 1):
            try:
                resp = await self.rpc.send_raw_transaction(raw, opts=opts)
                return resp.value
            except SolanaRpcException as e:
                last_error = e
                logger.warning("send attempt %d/%d failed: %s", attempt, self.send_attempts, e)
                if attempt < self.send_attempts:
                    await asyncio.sleep(self.retry_delay)
            except RPCException as e:
                raise SubmissionError(f"Transaction rejected: {e}") from e
        raise SubmissionError(f"Send failed after {self.send_attempts} attempts: {last_error}") from last_error

    async def confirm(self, signature: Signature, utx: UnsignedTransaction):
        """Wait for `confirmed` until the blockhash expires."""
        last_error = None
        for attempt in range(1, self.send_attempts + 1):
            try:
                resp = await self.rpc.confirm_transaction(
                    signature, self.commitment,
                    last_valid_block_height=utx.last_valid_block_height,
                )
                break
            except TransactionExpiredBlockheightExceededError:
                raise TransactionExpired(str(signature), utx.last_valid_block_height) from None
            except (SolanaRpcException, UnconfirmedTxError) as e:
                last_error = e
                logger.warning("confirm attempt %d/%d failed: %s", attempt, self.send_attempts, e)
                if attempt < self.send_attempts:
                    await asyncio.sleep(self.retry_delay)
        else:
            raise SubmissionError(f"Confirmation failed: {last_error}. Signature: {signature}") from last_error

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            raise SubmissionError(f"Transaction failed on-chain: {status.err}. Signature: {signature}")

    async def submit(self, utx: UnsignedTransaction) -> str:
        self.board.update(
            phase=Phase.WAITING_APPROVAL,
            message="Waiting for signer approval...",
        )
        signed = await self.sign(utx)

        self.board.update(phase=Phase.SENDING, message="Transaction approved! Sending to network...")
        signature = await self.send(signed)
        sig = str(signature)

        self.board.update(
            phase=Phase.CONFIRMING,
            last_tx_signature=sig,
            message=f"Confirming transaction: {sig[:8]}...",
        )
        await self.confirm(signature, utx)

        self.board.update(phase=Phase.SUCCESS, message=f"Transaction confirmed! Signature: {sig[:8]}...")
        logger.info("transaction confirmed: %s", sig)
        return sig
