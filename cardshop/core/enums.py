from enum import StrEnum


class UserStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class CardRarity(StrEnum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"
    MYTHIC = "mythic"

    @property
    def rank(self) -> int:
        return list(CardRarity).index(self)

    def is_at_least(self, other: "CardRarity") -> bool:
        return self.rank >= other.rank


class CardCondition(StrEnum):
    MINT = "mint"
    NEAR_MINT = "near_mint"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class CardSetStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"
    ARCHIVED = "archived"


class PackType(StrEnum):
    BOOSTER = "booster"
    STARTER = "starter"
    THEME = "theme"
    COLLECTION = "collection"
    SPECIAL = "special"


class ProductType(StrEnum):
    PACK = "pack"
    BOX = "box"


class ReservationStatus(StrEnum):
    RESERVED = "reserved"
    CONSUMED = "consumed"
    RELEASED = "released"


class TransactionType(StrEnum):
    PURCHASE = "purchase"
    SALE = "sale"
    TRADE = "trade"
    REFUND = "refund"
    PACK_OPENING = "pack_opening"
    INVENTORY_ADJUSTMENT = "inventory_adjustment"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TransactionItemType(StrEnum):
    CARD = "card"
    PACK = "pack"
    BOX = "box"


class Currency(StrEnum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"


class OpeningState(StrEnum):
    REQUESTED = "requested"
    STOCK_RESERVED = "stock_reserved"
    DRAWN = "drawn"
    APPLIED = "applied"
    RELEASED = "released"
    FAILED = "failed"
