import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from cardshop.core.enums import CardRarity
from cardshop.core.exceptions import ValidationError
from cardshop.engine.pack_spec import PackSpec

GUARANTEED_RARITY_FLOOR = CardRarity.RARE


@dataclass(frozen=True, slots=True)
class CardRef:
    card_id: int
    rarity: CardRarity
    is_holo: bool = False


@dataclass(frozen=True, slots=True)
class RarityEntry:
    weight: float
    cards: tuple[CardRef, ...]


class RarityTable:
    """Immutable draw weights and eligible cards of one card set.

    Use :meth:`build` to construct a validated table.
    """

    def __init__(
        self, card_set_id: int, entries: Mapping[CardRarity, RarityEntry], *, non_repeating: bool
    ) -> None:
        self.card_set_id = card_set_id
        self.non_repeating = non_repeating
        self._entries = MappingProxyType(dict(entries))

        fill_rarities: list[CardRarity] = []
        cumulative: list[float] = []
        running = 0.0
        for rarity in CardRarity:
            weight = self.weight_of(rarity)
            if weight > 0:
                running += weight
                fill_rarities.append(rarity)
                cumulative.append(running)
        self.fill_rarities = tuple(fill_rarities)
        self.cumulative_weights = tuple(cumulative)
        self.total_weight = running

        self.rare_pool = tuple(
            card
            for rarity in CardRarity
            if rarity.is_at_least(GUARANTEED_RARITY_FLOOR)
            for card in self.eligible_cards(rarity)
        )
        self.holo_pool = tuple(
            card for rarity in CardRarity for card in self.eligible_cards(rarity) if card.is_holo
        )

    @classmethod
    def build(
        cls,
        card_set_id: int,
        weights: Mapping[CardRarity, float],
        cards: Iterable[CardRef],
        *,
        guarantees: Iterable[PackSpec] = (),
        non_repeating: bool = False,
    ) -> "RarityTable":
        """Validate ``weights`` and ``cards`` and freeze them into a table.

        Raises:
            ValidationError: A weight is negative or not finite, the weights do not
                sum to a positive value, a weighted rarity has no cards, or one of
                ``guarantees`` refers to an empty pool.
        """
        errors: dict[str, list[str]] = {}

        for rarity, weight in weights.items():
            if not math.isfinite(weight) or weight < 0:
                errors.setdefault(str(rarity), []).append("weight must be a finite value >= 0")
        if errors:
            raise ValidationError("Invalid rarity weights", errors=errors)
        if sum(weights.values()) <= 0:
            raise ValidationError("Rarity weights must sum to a positive value")

        by_rarity: dict[CardRarity, list[CardRef]] = {rarity: [] for rarity in CardRarity}
        for card in cards:
            by_rarity[card.rarity].append(card)

        for rarity, weight in weights.items():
            if weight > 0 and not by_rarity[rarity]:
                errors.setdefault(str(rarity), []).append("rarity has a weight but no cards")
        if errors:
            raise ValidationError("Rarity table has weighted rarities without cards", errors=errors)

        table = cls(
            card_set_id,
            {
                rarity: RarityEntry(
                    weight=float(weights.get(rarity, 0.0)),
                    cards=tuple(sorted(pool, key=lambda c: c.card_id)),
                )
                for rarity, pool in by_rarity.items()
            },
            non_repeating=non_repeating,
        )
        for spec in guarantees:
            table.validate_guarantees(spec)
        return table

    def weight_of(self, rarity: CardRarity) -> float:
        entry = self._entries.get(rarity)
        return entry.weight if entry else 0.0

    def eligible_cards(self, rarity: CardRarity) -> tuple[CardRef, ...]:
        entry = self._entries.get(rarity)
        return entry.cards if entry else ()

    def card_weight(self, card: CardRef) -> float:
        """Share of its rarity's weight carried by a single card."""
        pool = self.eligible_cards(card.rarity)
        if not pool:
            return 0.0
        return self.weight_of(card.rarity) / len(pool)

    def probability_of(self, rarity: CardRarity) -> float:
        return self.weight_of(rarity) / self.total_weight

    def validate_guarantees(self, spec: PackSpec) -> None:
        errors: dict[str, list[str]] = {}
        if spec.guaranteed_rares and not self.rare_pool:
            errors["guaranteed_rares"] = [
                f"card set {self.card_set_id} has no {GUARANTEED_RARITY_FLOOR} or higher cards"
            ]
        if spec.guaranteed_holos and not self.holo_pool:
            errors["guaranteed_holos"] = [f"card set {self.card_set_id} has no holo cards"]
        if errors:
            raise ValidationError("Pack guarantees reference empty card pools", errors=errors)
