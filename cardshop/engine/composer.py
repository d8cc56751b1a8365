import random
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from cardshop.core.enums import CardRarity
from cardshop.core.exceptions import ValidationError
from cardshop.engine.draw import DrawEngine, DrawResult
from cardshop.engine.pack_spec import PackSpec

RandomFactory = Callable[[], random.Random]


@dataclass(frozen=True, slots=True)
class ComposedBox:
    packs: tuple[DrawResult, ...]

    @property
    def total_cards_obtained(self) -> int:
        return sum(len(pack) for pack in self.packs)

    @property
    def total_value(self) -> int:
        return sum(pack.total_value for pack in self.packs)

    @property
    def rarity_breakdown(self) -> dict[CardRarity, int]:
        breakdown = dict.fromkeys(CardRarity, 0)
        for pack in self.packs:
            for rarity, count in pack.rarity_breakdown.items():
                breakdown[rarity] += count
        return breakdown


class PackComposer:
    """Runs the draw engine once per pack, each with its own random source."""

    def __init__(
        self, engine: DrawEngine, rng_factory: RandomFactory = secrets.SystemRandom
    ) -> None:
        self.engine = engine
        self.rng_factory = rng_factory

    def compose_pack(self, spec: PackSpec, values: Mapping[int, int]) -> DrawResult:
        return self.engine.draw(spec, values, self.rng_factory())

    def compose_box(
        self, spec: PackSpec, packs_per_box: int, values: Mapping[int, int]
    ) -> ComposedBox:
        if packs_per_box < 1:
            raise ValidationError(
                "A box must contain at least one pack", errors={"packs_per_box": ["must be >= 1"]}
            )
        return ComposedBox(
            packs=tuple(self.compose_pack(spec, values) for _ in range(packs_per_box))
        )
