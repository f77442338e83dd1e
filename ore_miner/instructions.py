"""ORE instruction builders and program-derived addresses."""

import logging

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from . import abi
from .codec import (
    F64, SQUARES, U8, U64, as_pubkey, derive_address, encode, u64_seed,
)

logger = logging.getLogger(__name__)


class OreProgram:
    """Addresses and instruction builders for the ORE and ore_refined programs.

    Account order in every builder is the program's ABI and must not change.
    """

    def __init__(self, program_id: str = abi.ORE_PROGRAM_ID,
                 entropy_program_id: str = abi.ENTROPY_PROGRAM_ID,
                 refined_program_id: str = abi.REFINED_PROGRAM_ID,
                 refined_ore_program: str = abi.REFINED_ORE_PROGRAM,
                 fee_wallet: str = abi.REFINED_FEE_WALLET,
                 treasury_address: str | None = None):
        self.program_id = as_pubkey(program_id)
        self.entropy_program_id = as_pubkey(entropy_program_id)
        self.refined_program_id = as_pubkey(refined_program_id)
        self.refined_ore_program = as_pubkey(refined_ore_program)
        self.fee_wallet = as_pubkey(fee_wallet)
        self.treasury_override = as_pubkey(treasury_address) if treasury_address else None
        self.system_program = as_pubkey(abi.SYSTEM_PROGRAM_ID)

    # PDAs

    def automation_pda(self, authority: Pubkey) -> tuple[Pubkey, int]:
        return derive_address([abi.AUTOMATION_SEED], self.program_id, authority)

    def miner_pda(self, authority: Pubkey) -> tuple[Pubkey, int]:
        return derive_address([abi.MINER_SEED], self.program_id, authority)

    def board_pda(self) -> tuple[Pubkey, int]:
        return derive_address([abi.BOARD_SEED], self.program_id)

    def round_pda(self, round_id: int) -> tuple[Pubkey, int]:
        return derive_address([abi.ROUND_SEED, u64_seed(round_id)], self.program_id)

    def entropy_var_pda(self, board: Pubkey, var_id: int = 0) -> tuple[Pubkey, int]:
        """Entropy var account. Derived under the entropy program, not ORE."""
        return derive_address(
            [abi.ENTROPY_VAR_SEED, bytes(board), u64_seed(var_id)],
            self.entropy_program_id,
        )

    def treasury_address(self) -> Pubkey:
        """Configured treasury if set, else the treasury PDA."""
        if self.treasury_override is not None:
            return self.treasury_override
        return derive_address([abi.TREASURY_SEED], self.program_id)[0]

    # Instructions

    def automate(self, signer: Pubkey, amount: int, deposit: int, executor: Pubkey,
                 fee: int, mask: int, strategy: int = 0) -> Instruction:
        """Open or update the signer's Automation account. A zero executor closes it."""
        data = encode(abi.OP_AUTOMATE, [
            (U64, amount),
            (U64, deposit),
            (U64, fee),
            (U64, mask),
            (U8, strategy),
        ])
        accounts = [
            AccountMeta(signer, is_signer=True, is_writable=True),
            AccountMeta(self.automation_pda(signer)[0], is_signer=False, is_writable=True),
            AccountMeta(executor, is_signer=False, is_writable=True),
            AccountMeta(self.miner_pda(signer)[0], is_signer=False, is_writable=True),
            AccountMeta(self.system_program, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, data, accounts)

    def checkpoint(self, signer: Pubkey, authority: Pubkey, round_id: int) -> Instruction:
        """Settle the miner's rewards for round_id. Must precede a deploy."""
        data = encode(abi.OP_CHECKPOINT)
        accounts = [
            AccountMeta(signer, is_signer=True, is_writable=True),
            AccountMeta(self.board_pda()[0], is_signer=False, is_writable=True),
            AccountMeta(self.miner_pda(authority)[0], is_signer=False, is_writable=True),
            AccountMeta(self.round_pda(round_id)[0], is_signer=False, is_writable=True),
            AccountMeta(self.treasury_address(), is_signer=False, is_writable=True),
            AccountMeta(self.system_program, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, data, accounts)

    def deploy(self, signer: Pubkey, authority: Pubkey, amount: int,
               round_id: int, squares: list[bool]) -> Instruction:
        """Deploy `amount` lamports on each selected square of round_id."""
        data = encode(abi.OP_DEPLOY, [(U64, amount), (SQUARES, squares)])
        board = self.board_pda()[0]
        accounts = [
            AccountMeta(signer, is_signer=True, is_writable=True),
            AccountMeta(authority, is_signer=False, is_writable=True),
            AccountMeta(self.automation_pda(authority)[0], is_signer=False, is_writable=True),
            AccountMeta(board, is_signer=False, is_writable=True),
            AccountMeta(self.miner_pda(authority)[0], is_signer=False, is_writable=True),
            AccountMeta(self.round_pda(round_id)[0], is_signer=False, is_writable=True),
            AccountMeta(self.system_program, is_signer=False, is_writable=False),
            AccountMeta(self.entropy_var_pda(board)[0], is_signer=False, is_writable=True),
            AccountMeta(self.entropy_program_id, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, data, accounts)

    def claim_sol(self, signer: Pubkey) -> Instruction:
        data = encode(abi.OP_CLAIM_SOL)
        accounts = [
            AccountMeta(signer, is_signer=True, is_writable=True),
            AccountMeta(self.miner_pda(signer)[0], is_signer=False, is_writable=True),
            AccountMeta(self.system_program, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, data, accounts)

    def refined(self, signer: Pubkey, round_id: int, ore_price: float,
                sol_price: float, amount: int, remaining_slots: int,
                refine_rate: float, req_id: int) -> Instruction:
        """ore_refined wrapper: decides the deploy on-chain from prices and rate."""
        data = encode(abi.REFINED_DISCRIMINATOR, [
            (F64, ore_price),
            (F64, sol_price),
            (U64, amount),
            (U8, remaining_slots),
            (F64, refine_rate),
            (U8, req_id),
        ])
        accounts = [
            AccountMeta(signer, is_signer=True, is_writable=True),
            AccountMeta(signer, is_signer=False, is_writable=True),
            AccountMeta(self.automation_pda(signer)[0], is_signer=False, is_writable=True),
            AccountMeta(self.board_pda()[0], is_signer=False, is_writable=True),
            AccountMeta(self.miner_pda(signer)[0], is_signer=False, is_writable=True),
            AccountMeta(self.round_pda(round_id)[0], is_signer=False, is_writable=True),
            AccountMeta(self.treasury_address(), is_signer=False, is_writable=True),
            AccountMeta(self.system_program, is_signer=False, is_writable=False),
            AccountMeta(self.refined_ore_program, is_signer=False, is_writable=False),
            AccountMeta(self.fee_wallet, is_signer=False, is_writable=True),
        ]
        logger.debug("refined round=%s req_id=%s data=%s", round_id, req_id, data.hex())
        return Instruction(self.refined_program_id, data, accounts)
