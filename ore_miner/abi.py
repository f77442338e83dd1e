"""Program ids, seeds, opcodes and account layouts for the ORE v3 programs."""

# Solana mainnet addresses
ORE_PROGRAM_ID = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo"
ORE_MINT = "oreoU2P8bN6jkk3jbaiVxYnG1dCXcYxwhwyK9jSybcp"
SOL_MINT = "So11111111111111111111111111111111111111112"
ENTROPY_PROGRAM_ID = "3jSkUuYBoJzQPMEzTvkDFXCZUBksPamrVhrnHR9igu2X"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# ore_refined wrapper program and its accounts
REFINED_PROGRAM_ID = "HZJfY7oVkbWxsmMQX5ipqahMnC74H72UYaBXJ8an2PoR"
REFINED_ORE_PROGRAM = "oreV3EG1i9BEgiAJ8b177Z2S2rMarzak4NMv1kULvWv"
REFINED_FEE_WALLET = "Feei2iwqp9Adcyte1F5XnKzGTFL1VDg4VyiypvoeiJyJ"

# PDA seeds
AUTOMATION_SEED = b"automation"
MINER_SEED = b"miner"
BOARD_SEED = b"board"
ROUND_SEED = b"round"
TREASURY_SEED = b"treasury"
ENTROPY_VAR_SEED = b"var"

# ORE instruction enum (steel framework, 1-byte discriminant)
OP_AUTOMATE = 0x00
OP_CHECKPOINT = 0x02
OP_CLAIM_SOL = 0x03
OP_DEPLOY = 0x06

# Anchor discriminator of ore_refined's `refined`: sha256("global:refined")[:8]
REFINED_DISCRIMINATOR = bytes([63, 24, 160, 231, 240, 209, 92, 51])

BOARD_SQUARES = 25
LAMPORTS_PER_SOL = 1_000_000_000

# Account layouts: (field, kind) after the 8-byte account discriminator.
# kind is a field name from codec.FIELD_TYPES, "pubkey", "u64[25]" or "bytes16".
ACCOUNT_DISCRIMINATOR_LEN = 8

MINER_LAYOUT = [
    ("authority", "pubkey"),
    ("deployed", "u64[25]"),
    ("cumulative", "u64[25]"),
    ("checkpoint_fee", "u64"),
    ("checkpoint_id", "u64"),
    ("last_claim_ore_at", "i64"),
    ("last_claim_sol_at", "i64"),
    ("rewards_factor", "bytes16"),
    ("rewards_sol", "u64"),
    ("rewards_ore", "u64"),
    ("refined_ore", "u64"),
    ("round_id", "u64"),
    ("lifetime_rewards_sol", "u64"),
    ("lifetime_rewards_ore", "u64"),
]

AUTOMATION_LAYOUT = [
    ("amount", "u64"),
    ("authority", "pubkey"),
    ("balance", "u64"),
    ("executor", "pubkey"),
    ("fee", "u64"),
    ("strategy", "u64"),
    ("mask", "u64"),
]
