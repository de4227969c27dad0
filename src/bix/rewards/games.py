"""Chance games settled server-side.

Winnings are credited as earnings with 1 XP per 10 BIX of net win. A lost
bet is a pure balance debit: it never reduces total_earned or XP.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from bix.errors import BusinessRuleViolation
from bix.ledger.metrics import track_metric
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward, record_loss
from bix.profiles.service import require_profile
from bix.utils.numbers import round_half_up

logger = structlog.get_logger()

MIN_BET = 10
MAX_BET = 1000
LOSS_MESSAGE = "Better luck next time!"

# game type -> [(roll strictly above, multiplier, message)], checked in order
WIN_TABLE: dict[str, list[tuple[float, int, str]]] = {
    "roulette": [(0.9, 5, "JACKPOT! 5x!"), (0.6, 2, "Nice! 2x win!")],
    "coinflip": [(0.5, 2, "You won!")],
}


def settle(game_type: str, roll: float) -> tuple[int, str]:
    """Map a roll in [0, 1) to (multiplier, message). Multiplier 0 is a loss."""
    for threshold, multiplier, message in WIN_TABLE[game_type]:
        if roll > threshold:
            return multiplier, message
    return 0, LOSS_MESSAGE


async def play_game(
    db: AsyncSession,
    user_id: str,
    game_type: str,
    bet_amount: int,
    rng: Callable[[], float] | None = None,
) -> dict[str, Any]:
    if game_type not in WIN_TABLE:
        raise BusinessRuleViolation(f"Unknown game type: {game_type}")
    if not MIN_BET <= bet_amount <= MAX_BET:
        raise BusinessRuleViolation(f"Bet must be between {MIN_BET}-{MAX_BET} BIX")

    profile = await require_profile(db, user_id)
    if profile.balance < bet_amount:
        raise BusinessRuleViolation("Insufficient balance")

    roll = (rng or random.SystemRandom().random)()
    multiplier, message = settle(game_type, roll)
    net_change = bet_amount * multiplier - bet_amount
    outcome = "WIN" if multiplier > 0 else "LOSS"
    audit = AuditMeta(
        category="game",
        transaction_type="game",
        description=f"{game_type} {outcome} ({multiplier}x)",
        source_id=game_type,
        source_type="game",
    )

    if net_change > 0:
        credited = await apply_reward(
            db,
            user_id,
            RewardAmounts(balance=net_change, earned=net_change, xp=round_half_up(net_change / 10)),
            audit,
        )
        new_balance = credited.balance
    else:
        updated = await record_loss(db, user_id, -net_change, audit)
        await track_metric(db, "game", 0)
        new_balance = updated.balance

    logger.info("game_settled", user_id=user_id, game_type=game_type, bet=bet_amount, net_change=net_change)
    return {
        "multiplier": multiplier,
        "net_change": net_change,
        "new_balance": new_balance,
        "message": message,
    }
