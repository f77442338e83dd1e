"""YAML configuration and the operator's automation parameters."""

import math
from dataclasses import dataclass, field

import yaml

from . import abi
from .codec import U32, U64, parse_squares
from .errors import EncodingError
from .prices import JUPITER_PRICE_URL
from .rounds import ORE_STATE_URL

STRATEGIES = ("refined", "deploy")
COMMITMENTS = ("processed", "confirmed", "finalized")


def load_config(path: str | None) -> dict:
    if path is None:
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def sol_to_lamports(amount: float) -> int:
    return int(round(amount * abi.LAMPORTS_PER_SOL))


@dataclass(frozen=True)
class AutomationParameters:
    """What to submit each round. Checked up front so a bad value never reaches the network."""
    deploy_amount: int
    slots_threshold: int = 15
    refine_rate: float = 1.0
    strategy: str = "refined"
    squares: tuple[bool, ...] = (True,) * abi.BOARD_SQUARES
    claim_sol: bool = True

    def __post_init__(self):
        U64.pack(self.deploy_amount)
        U32.pack(self.slots_threshold)
        if self.strategy not in STRATEGIES:
            raise EncodingError(f"Unknown strategy {self.strategy!r}, expected one of {STRATEGIES}")
        if self.strategy == "refined" and self.slots_threshold > 255:
            raise EncodingError(f"refined strategy takes remaining slots as u8, got {self.slots_threshold}")
        if not math.isfinite(self.refine_rate) or self.refine_rate <= 0:
            raise EncodingError(f"refine_rate must be a positive number, got {self.refine_rate}")
        if len(self.squares) != abi.BOARD_SQUARES:
            raise EncodingError(f"Expected {abi.BOARD_SQUARES} square flags, got {len(self.squares)}")
        if self.strategy == "deploy" and not any(self.squares):
            raise EncodingError("deploy strategy needs at least one square selected")

    @classmethod
    def from_dict(cls, cfg: dict) -> "AutomationParameters":
        squares = cfg.get("squares", "all")
        if isinstance(squares, str):
            squares = parse_squares(squares)
        elif all(isinstance(s, int) and not isinstance(s, bool) for s in squares):
            squares = parse_squares(",".join(str(s) for s in squares))
        return cls(
            deploy_amount=sol_to_lamports(float(cfg.get("amount", 0.0))),
            slots_threshold=int(cfg.get("slots_threshold", 15)),
            refine_rate=float(cfg.get("refine_rate", 1.0)),
            strategy=cfg.get("strategy", "refined"),
            squares=tuple(bool(s) for s in squares),
            claim_sol=bool(cfg.get("claim_sol", True)),
        )


@dataclass(frozen=True)
class MinerConfig:
    rpc_url: str | None = None
    keypair: str | None = None
    state_url: str = ORE_STATE_URL
    price_url: str = JUPITER_PRICE_URL
    program_id: str = abi.ORE_PROGRAM_ID
    entropy_program_id: str = abi.ENTROPY_PROGRAM_ID
    refined_program_id: str = abi.REFINED_PROGRAM_ID
    treasury_address: str | None = None
    poll_interval: float = 1.0
    sign_timeout: float = 120.0
    request_timeout: float = 10.0
    max_attempts_per_round: int = 3
    commitment: str = "confirmed"
    confirm_each: bool = False
    automation: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.commitment not in COMMITMENTS:
            raise ValueError(f"commitment must be one of {', '.join(COMMITMENTS)}, got {self.commitment!r}")

    @classmethod
    def from_dict(cls, cfg: dict) -> "MinerConfig":
        known = {k: v for k, v in cfg.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def parameters(self, **overrides) -> AutomationParameters:
        """AutomationParameters from the `automation` section, CLI overrides on top."""
        merged = dict(self.automation)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return AutomationParameters.from_dict(merged)
