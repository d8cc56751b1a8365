import random
import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from cardshop.core.enums import CardRarity
from cardshop.core.exceptions import InsufficientPoolError, NotFoundError
from cardshop.engine.pack_spec import PackSpec
from cardshop.engine.rarity_table import GUARANTEED_RARITY_FLOOR, CardRef, RarityTable


@dataclass(frozen=True, slots=True)
class DrawnCard:
    card_id: int
    rarity: CardRarity
    is_holo: bool
    value: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "rarity": str(self.rarity),
            "is_holo": self.is_holo,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class DrawResult:
    """Cards of one pack in slot order."""

    cards: tuple[DrawnCard, ...] = ()

    def __len__(self) -> int:
        return len(self.cards)

    @property
    def total_value(self) -> int:
        return sum(card.value for card in self.cards)

    @property
    def rarity_breakdown(self) -> dict[CardRarity, int]:
        breakdown = dict.fromkeys(CardRarity, 0)
        for card in self.cards:
            breakdown[card.rarity] += 1
        return breakdown

    @property
    def holo_count(self) -> int:
        return sum(card.is_holo for card in self.cards)

    def count_at_least(self, rarity: CardRarity) -> int:
        return sum(card.rarity.is_at_least(rarity) for card in self.cards)


class DrawEngine:
    """Draws single packs from a rarity table.

    Guaranteed slots are filled first from their restricted pools, the remaining
    slots from the whole table, then the slot order is shuffled so guaranteed
    cards cannot be told apart by position.
    """

    def __init__(self, table: RarityTable) -> None:
        self.table = table

    def check(self, spec: PackSpec) -> None:
        """Make sure ``spec`` can always be drawn from this table.

        Raises:
            ValidationError: A guarantee refers to an empty pool.
            InsufficientPoolError: The set is non-repeating and a guarantee needs
                more distinct cards than its pool holds.
        """
        self.table.validate_guarantees(spec)
        if not self.table.non_repeating:
            return

        rare_pool, holo_pool = self.table.rare_pool, self.table.holo_pool
        if len(rare_pool) < spec.guaranteed_rares:
            raise InsufficientPoolError(
                f"{spec.guaranteed_rares} distinct {GUARANTEED_RARITY_FLOOR}+ cards needed, "
                f"card set {self.table.card_set_id} has {len(rare_pool)}"
            )
        if len(holo_pool) < spec.guaranteed_holos:
            raise InsufficientPoolError(
                f"{spec.guaranteed_holos} distinct holo cards needed, "
                f"card set {self.table.card_set_id} has {len(holo_pool)}"
            )
        if spec.guaranteed_holos and spec.guaranteed_rares:
            # Rare holos can serve either guarantee but only once.
            combined = len(set(rare_pool) | set(holo_pool))
            if combined < spec.guaranteed_slots:
                raise InsufficientPoolError(
                    f"{spec.guaranteed_slots} distinct guaranteed cards needed, "
                    f"card set {self.table.card_set_id} has {combined}"
                )

    def draw(
        self, spec: PackSpec, values: Mapping[int, int], rng: random.Random | None = None
    ) -> DrawResult:
        """Draw one pack.

        Args:
            spec: Pack definition.
            values: Current value of every card that can be drawn, snapshotted
                into the result.
            rng: Random source. Defaults to a fresh ``secrets.SystemRandom``.
        """
        if spec.cards_per_pack == 0:
            return DrawResult()

        rng = rng or secrets.SystemRandom()
        used: set[CardRef] = set()

        slots = self._draw_guaranteed(
            self.table.rare_pool,
            spec.guaranteed_rares,
            rng,
            used,
            keep_holos=spec.guaranteed_holos,
        )
        slots += self._draw_guaranteed(self.table.holo_pool, spec.guaranteed_holos, rng, used)
        slots += self._draw_fill(spec.fill_slots, rng)

        rng.shuffle(slots)

        return DrawResult(cards=tuple(self._snapshot(card, values) for card in slots))

    def _draw_fill(self, count: int, rng: random.Random) -> list[CardRef]:
        if count == 0:
            return []

        rarities = rng.choices(
            self.table.fill_rarities, cum_weights=self.table.cumulative_weights, k=count
        )
        return [rng.choice(self.table.eligible_cards(rarity)) for rarity in rarities]

    def _draw_guaranteed(
        self,
        pool: Sequence[CardRef],
        count: int,
        rng: random.Random,
        used: set[CardRef],
        *,
        keep_holos: int = 0,
    ) -> list[CardRef]:
        """Weight-proportional draw of ``count`` cards from ``pool``.

        For non-repeating sets the cards are distinct and never taken from
        ``used``; at least ``keep_holos`` holo cards are left for later slots.
        """
        if count == 0:
            return []

        if not self.table.non_repeating:
            return rng.choices(pool, weights=self._pool_weights(pool), k=count)

        holos_left = sum(1 for card in self.table.holo_pool if card not in used)
        picked: list[CardRef] = []
        for _ in range(count):
            candidates = [
                card
                for card in pool
                if card not in used and (not card.is_holo or holos_left > keep_holos)
            ]
            if not candidates:
                raise InsufficientPoolError(
                    f"{count} distinct cards needed, pool of card set "
                    f"{self.table.card_set_id} ran out after {len(picked)}"
                )

            card = rng.choices(candidates, weights=self._pool_weights(candidates), k=1)[0]
            used.add(card)
            picked.append(card)
            if card.is_holo:
                holos_left -= 1

        return picked

    def _pool_weights(self, pool: Sequence[CardRef]) -> list[float]:
        weights = [self.table.card_weight(card) for card in pool]
        if sum(weights) <= 0:
            # Every rarity of the pool is unweighted; the guarantee still holds.
            return [1.0] * len(pool)
        return weights

    @staticmethod
    def _snapshot(card: CardRef, values: Mapping[int, int]) -> DrawnCard:
        value = values.get(card.card_id)
        if value is None:
            raise NotFoundError(
                f"No current value for card {card.card_id}", resource="card", identifier=card.card_id
            )
        return DrawnCard(card_id=card.card_id, rarity=card.rarity, is_holo=card.is_holo, value=value)
