"""Domain models for the kiosk order engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class KioskMode(str, Enum):
    """Operating state of the device."""

    ACTIVE = "active"
    CLOSED = "closed"
    OUT_OF_ORDER = "out_of_order"


class CustomerKind(str, Enum):
    UNSET = "unset"
    GUEST = "guest"
    MEMBER = "member"


class PaymentMethod(str, Enum):
    CARD = "card"
    GIFT_CARD = "gift_card"


@dataclass(frozen=True)
class MenuItem:
    """A catalog entry, snapshotted by value into cart lines."""

    item_id: str
    name: str
    price_cents: int | None = None
    taxable: bool = False
    tax_rate: Decimal | None = None
    department_id: str | None = None
    is_modifier: bool = False
    visible: bool = True
    is_deleted: bool = False
    price_prompt: bool = False


@dataclass(frozen=True)
class Department:
    department_id: str
    name: str
    visible: bool = True
    list_order: int | None = None
    tax_rate: Decimal | None = None


@dataclass(frozen=True)
class ModifierGroup:
    """A named group of modifier choices."""

    group_id: int
    name: str
    prompt: str | None = None
    max_select: int = 0
    forced: bool = False
    hidden: bool = False


@dataclass(frozen=True)
class ModifierGroupLink:
    """Links an item (or a modifier choice) to a modifier group."""

    item_id: str
    group_id: int
    max_select: int | None = None
    forced: bool | None = None


@dataclass(frozen=True)
class BusinessInfo:
    store_id: str
    name: str | None = None
    address: str | None = None
    city_state_zip: str | None = None
    phone: str | None = None
    footer_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaxRate:
    tax_id: int
    rate: Decimal


@dataclass(frozen=True)
class LoyaltyProfile:
    """A loyalty member as returned by the loyalty lookup."""

    customer_id: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    tax_exempt: bool = False
    loyalty_points: int = 0
    membership_card: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class CustomerIdentity:
    """Unset, guest, or member carrying a loyalty profile."""

    kind: CustomerKind = CustomerKind.UNSET
    profile: LoyaltyProfile | None = None

    @classmethod
    def guest(cls) -> CustomerIdentity:
        return cls(kind=CustomerKind.GUEST)

    @classmethod
    def member(cls, profile: LoyaltyProfile) -> CustomerIdentity:
        return cls(kind=CustomerKind.MEMBER, profile=profile)


@dataclass(frozen=True)
class CartLine:
    """A line in the active order; modifiers are owned by value."""

    line_id: str
    item: MenuItem
    quantity: int = 1
    price_override_cents: int | None = None
    tax_rate: Decimal | None = None
    is_modifier: bool = False
    parent_item_id: str | None = None
    modifiers: tuple[CartLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Read-only menu reference data for one session."""

    departments: tuple[Department, ...] = ()
    items: tuple[MenuItem, ...] = ()
    modifier_groups: tuple[ModifierGroup, ...] = ()
    modifier_links: tuple[ModifierGroupLink, ...] = ()
    business_info: BusinessInfo | None = None
    tax_rates: tuple[TaxRate, ...] = ()
