"""
Simulated opponents populating the live-activity view
"""

import logging
import random
from decimal import Decimal

from config import config
from models import Bet, OpponentView

logger = logging.getLogger(__name__)


class OpponentPool:
    """
    Fresh opponent bets every round, cashed out by independent per-tick
    Bernoulli trials once the multiplier clears a floor.

    Opponents never touch the player's balance. After freeze() no opponent
    may cash out until the next regenerate().
    """

    def __init__(self, rng: random.Random | None = None, settings: dict | None = None):
        settings = settings or config.section("opponents")
        self.rng = rng or random.Random()
        self.roster = tuple(settings["roster"])
        self.pool_size = settings["pool_size"]
        self.min_stake = settings["min_stake"]
        self.max_stake = settings["max_stake"]
        self.cashout_probability = settings["cashout_probability"]
        self.cashout_min_multiplier = Decimal(str(settings["cashout_min_multiplier"]))
        self.lobby_padding = settings["lobby_padding"]

        self._bets: list[Bet] = []
        self._frozen = True

    @property
    def bets(self) -> list[Bet]:
        return list(self._bets)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def online(self) -> int:
        """Displayed lobby size"""
        return len(self._bets) + self.lobby_padding

    def regenerate(self) -> list[Bet]:
        """Replace the pool with fresh, uncashed opponent bets"""
        # each roster name bets at most once per round
        names = self.rng.sample(self.roster, k=min(self.pool_size, len(self.roster)))
        self._bets = [
            Bet(owner_name=name, amount=Decimal(self.rng.randrange(self.min_stake, self.max_stake)))
            for name in names
        ]
        self._frozen = False
        logger.debug(f"Opponent pool regenerated ({len(self._bets)} bets)")
        return self.bets

    def tick(self, multiplier: Decimal) -> list[Bet]:
        """
        Run one cash-out trial per live opponent

        Returns:
            Opponents that cashed out on this tick
        """
        if self._frozen or multiplier <= self.cashout_min_multiplier:
            return []

        cashed = []
        for bet in self._bets:
            if bet.cashed_out:
                continue
            if self.rng.random() < self.cashout_probability:
                bet.cash_out(multiplier)
                cashed.append(bet)

        if cashed:
            logger.debug(f"{len(cashed)} opponents cashed out at {multiplier}x")
        return cashed

    def freeze(self):
        """Stop all further cash-outs for this round"""
        self._frozen = True

    def views(self) -> list[OpponentView]:
        return [
            OpponentView(
                bet_id=bet.bet_id,
                owner_name=bet.owner_name,
                amount=bet.amount,
                cashed_out=bet.cashed_out,
                cashout_multiplier=bet.cashout_multiplier,
            )
            for bet in self._bets
        ]
