import math
import random
import unittest

from solders.pubkey import Pubkey

from ore_miner import abi
from ore_miner.codec import (
    F64, I64, SQUARES, U8, U32, U64, decode_account, decode_automation,
    decode_mask, decode_miner, derive_address, encode, encode_mask,
    parse_squares,
)
from ore_miner.errors import EncodingError
from ore_miner.instructions import OreProgram


def miner_account_bytes(authority: Pubkey, checkpoint_id: int, round_id: int) -> bytes:
    return b"".join([
        bytes(8),
        bytes(authority),
        b"".join(U64.pack(i * 1000) for i in range(25)),
        bytes(200),
        U64.pack(5),
        U64.pack(checkpoint_id),
        I64.pack(-1),
        I64.pack(0),
        bytes(16),
        U64.pack(7),
        U64.pack(8),
        U64.pack(9),
        U64.pack(round_id),
        U64.pack(10),
        U64.pack(11),
    ])


class FieldTests(unittest.TestCase):
    def test_fixed_widths_little_endian(self):
        self.assertEqual(U8.pack(7), b"\x07")
        self.assertEqual(U32.pack(1), b"\x01\x00\x00\x00")
        self.assertEqual(U64.pack(1_000_000).hex(), "40420f0000000000")
        self.assertEqual(F64.pack(1.0).hex(), "000000000000f03f")

    def test_out_of_range_rejected(self):
        with self.assertRaises(EncodingError):
            U8.pack(256)
        with self.assertRaises(EncodingError):
            U64.pack(-1)
        with self.assertRaises(EncodingError):
            U32.pack(1 << 32)

    def test_non_int_rejected(self):
        with self.assertRaises(EncodingError):
            U64.pack(1.5)
        with self.assertRaises(EncodingError):
            U8.pack(True)

    def test_f64_must_be_finite(self):
        with self.assertRaises(EncodingError):
            F64.pack(math.nan)
        with self.assertRaises(EncodingError):
            F64.pack(math.inf)

    def test_encoding_error_is_value_error(self):
        with self.assertRaises(ValueError):
            U8.pack(-1)


class SquareMaskTests(unittest.TestCase):
    def test_all_squares(self):
        self.assertEqual(encode_mask([True] * 25), 0x1FFFFFF)
        self.assertEqual(SQUARES.pack([True] * 25).hex(), "ffffff01")

    def test_selected_bits(self):
        flags = parse_squares("0,4,12")
        self.assertEqual(encode_mask(flags), 1 | 1 << 4 | 1 << 12)
        self.assertEqual(decode_mask(encode_mask(flags)), flags)

    def test_mask_round_trip_over_board(self):
        rng = random.Random(25)
        masks = [0, 0x1FFFFFF, 0x0AAAAAA, 0x1555555]
        masks += [1 << i for i in range(25)]
        masks += [rng.randrange(1 << 25) for _ in range(500)]
        for mask in masks:
            flags = decode_mask(mask)
            self.assertEqual(len(flags), 25)
            self.assertEqual(encode_mask(flags), mask)
            self.assertEqual(decode_mask(encode_mask(flags)), flags)

    def test_wrong_length_rejected(self):
        with self.assertRaises(EncodingError):
            encode_mask([True] * 24)
        with self.assertRaises(EncodingError):
            encode_mask([True] * 26)

    def test_decode_rejects_high_bits(self):
        with self.assertRaises(EncodingError):
            decode_mask(1 << 25)

    def test_parse_squares(self):
        self.assertEqual(parse_squares("all"), [True] * 25)
        with self.assertRaises(EncodingError):
            parse_squares("25")
        with self.assertRaises(EncodingError):
            parse_squares("one")


class EncodeTests(unittest.TestCase):
    def test_int_opcode_is_one_byte(self):
        self.assertEqual(encode(6, [(U64, 1), (U32, 2)]).hex(), "06" "0100000000000000" "02000000")

    def test_opcode_out_of_range(self):
        with self.assertRaises(EncodingError):
            encode(300)

    def test_bytes_discriminator_used_as_given(self):
        data = encode(abi.REFINED_DISCRIMINATOR, [(U8, 1)])
        self.assertEqual(data.hex(), "3f18a0e7f0d15c33" "01")


class DeriveAddressTests(unittest.TestCase):
    def test_deterministic_and_valid(self):
        authority = Pubkey.new_unique()
        first = derive_address([abi.MINER_SEED], abi.ORE_PROGRAM_ID, authority)
        second = derive_address(["miner"], Pubkey.from_string(abi.ORE_PROGRAM_ID), str(authority))
        self.assertEqual(first, second)
        address, bump = first
        self.assertTrue(0 <= bump <= 255)
        program = Pubkey.from_string(abi.ORE_PROGRAM_ID)
        expected = Pubkey.create_program_address([abi.MINER_SEED, bytes(authority), bytes([bump])], program)
        self.assertEqual(address, expected)

    def test_authority_changes_address(self):
        a = derive_address([abi.MINER_SEED], abi.ORE_PROGRAM_ID, Pubkey.new_unique())
        b = derive_address([abi.MINER_SEED], abi.ORE_PROGRAM_ID, Pubkey.new_unique())
        self.assertNotEqual(a[0], b[0])

    def test_long_seed_rejected(self):
        with self.assertRaises(EncodingError):
            derive_address([bytes(33)], abi.ORE_PROGRAM_ID)

    def test_bad_program_id(self):
        with self.assertRaises(EncodingError):
            derive_address([b"board"], "not-a-key")


class InstructionLayoutTests(unittest.TestCase):
    def setUp(self):
        self.program = OreProgram()
        self.me = Pubkey.new_unique()

    def test_deploy_golden_bytes(self):
        ix = self.program.deploy(self.me, self.me, 1_000_000, 42, [True] * 25)
        self.assertEqual(bytes(ix.data).hex(), "06" "40420f0000000000" "ffffff01")
        self.assertEqual(ix.program_id, Pubkey.from_string(abi.ORE_PROGRAM_ID))

    def test_automate_golden_bytes(self):
        ix = self.program.automate(self.me, 1_000_000, 2_000_000_000, self.me, 0, 0x1FFFFFF)
        self.assertEqual(
            bytes(ix.data).hex(),
            "00" "40420f0000000000" "0094357700000000" "0000000000000000" "ffffff0100000000" "00",
        )
        self.assertEqual(len(bytes(ix.data)), 34)

    def test_automate_accounts(self):
        executor = Pubkey.new_unique()
        ix = self.program.automate(self.me, 1, 0, executor, 0, 1)
        self.assertEqual([m.pubkey for m in ix.accounts], [
            self.me,
            self.program.automation_pda(self.me)[0],
            executor,
            self.program.miner_pda(self.me)[0],
            Pubkey.from_string(abi.SYSTEM_PROGRAM_ID),
        ])
        self.assertEqual([m.is_signer for m in ix.accounts], [True, False, False, False, False])
        self.assertEqual([m.is_writable for m in ix.accounts], [True, True, True, True, False])

    def test_deploy_accounts(self):
        ix = self.program.deploy(self.me, self.me, 1, 42, parse_squares("3"))
        board = self.program.board_pda()[0]
        keys = [m.pubkey for m in ix.accounts]
        self.assertEqual(keys, [
            self.me,
            self.me,
            self.program.automation_pda(self.me)[0],
            board,
            self.program.miner_pda(self.me)[0],
            self.program.round_pda(42)[0],
            Pubkey.from_string(abi.SYSTEM_PROGRAM_ID),
            self.program.entropy_var_pda(board)[0],
            Pubkey.from_string(abi.ENTROPY_PROGRAM_ID),
        ])
        self.assertTrue(ix.accounts[0].is_signer)
        self.assertFalse(ix.accounts[1].is_signer)
        self.assertFalse(ix.accounts[6].is_writable)
        self.assertTrue(ix.accounts[7].is_writable)

    def test_deploy_rejects_bad_mask(self):
        with self.assertRaises(EncodingError):
            self.program.deploy(self.me, self.me, 1, 42, [True] * 10)

    def test_checkpoint_and_claim_sol(self):
        checkpoint = self.program.checkpoint(self.me, self.me, 41)
        self.assertEqual(bytes(checkpoint.data), b"\x02")
        self.assertEqual(checkpoint.accounts[3].pubkey, self.program.round_pda(41)[0])
        self.assertEqual(checkpoint.accounts[4].pubkey, self.program.treasury_address())

        claim = self.program.claim_sol(self.me)
        self.assertEqual(bytes(claim.data), b"\x03")
        self.assertEqual(len(claim.accounts), 3)
        self.assertEqual(claim.accounts[1].pubkey, self.program.miner_pda(self.me)[0])

    def test_refined_golden_bytes(self):
        ix = self.program.refined(self.me, 42, 1.0, 2.0, 1000, 15, 0.5, 7)
        self.assertEqual(bytes(ix.data).hex(), (
            "3f18a0e7f0d15c33"
            "000000000000f03f"
            "0000000000000040"
            "e803000000000000"
            "0f"
            "000000000000e03f"
            "07"
        ))
        self.assertEqual(len(ix.data), 42)
        self.assertEqual(ix.program_id, Pubkey.from_string(abi.REFINED_PROGRAM_ID))
        self.assertEqual(len(ix.accounts), 10)
        self.assertEqual(ix.accounts[8].pubkey, Pubkey.from_string(abi.REFINED_ORE_PROGRAM))
        self.assertEqual(ix.accounts[9].pubkey, Pubkey.from_string(abi.REFINED_FEE_WALLET))

    def test_refined_req_id_must_fit_u8(self):
        with self.assertRaises(EncodingError):
            self.program.refined(self.me, 42, 1.0, 2.0, 1000, 15, 0.5, 256)

    def test_round_pda_depends_on_round(self):
        self.assertNotEqual(self.program.round_pda(1)[0], self.program.round_pda(2)[0])

    def test_treasury_override(self):
        wallet = Pubkey.new_unique()
        program = OreProgram(treasury_address=str(wallet))
        self.assertEqual(program.treasury_address(), wallet)


class AccountDecodeTests(unittest.TestCase):
    def test_decode_miner(self):
        authority = Pubkey.new_unique()
        miner = decode_miner(miner_account_bytes(authority, 41, 42))
        self.assertEqual(miner["authority"], authority)
        self.assertEqual(miner["deployed"][3], 3000)
        self.assertEqual(len(miner["cumulative"]), 25)
        self.assertEqual(miner["checkpoint_id"], 41)
        self.assertEqual(miner["last_claim_ore_at"], -1)
        self.assertEqual(miner["rewards_sol"], 7)
        self.assertEqual(miner["round_id"], 42)
        self.assertEqual(miner["lifetime_rewards_ore"], 11)

    def test_decode_automation(self):
        executor = Pubkey.new_unique()
        data = b"".join([
            bytes(8), U64.pack(100), bytes(Pubkey.new_unique()), U64.pack(200),
            bytes(executor), U64.pack(3), U64.pack(1), U64.pack(0x1FFFFFF),
        ])
        automation = decode_automation(data)
        self.assertEqual(automation["amount"], 100)
        self.assertEqual(automation["executor"], executor)
        self.assertEqual(automation["mask"], 0x1FFFFFF)

    def test_short_data_rejected(self):
        with self.assertRaises(EncodingError):
            decode_account(bytes(40), abi.MINER_LAYOUT)


if __name__ == "__main__":
    unittest.main()
