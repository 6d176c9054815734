"""Order and customer state as an explicit reducer over frozen dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, replace

from kiosk import cart as cart_ops
from kiosk.catalog import orderable_items
from kiosk.catalog import visible_departments as _visible_departments
from kiosk.models import (
    CartLine,
    CatalogSnapshot,
    CustomerIdentity,
    Department,
    KioskMode,
    LoyaltyProfile,
    MenuItem,
)


@dataclass(frozen=True)
class KioskState:
    catalog: CatalogSnapshot | None = None
    cart: tuple[CartLine, ...] = ()
    selected_department_id: str | None = None
    customer: CustomerIdentity = CustomerIdentity()
    customer_name: str = ""
    kiosk_mode: KioskMode = KioskMode.ACTIVE
    is_online: bool = False
    error: str | None = None


# Actions


@dataclass(frozen=True)
class SetCatalog:
    catalog: CatalogSnapshot
    is_online: bool


@dataclass(frozen=True)
class SetError:
    message: str | None


@dataclass(frozen=True)
class SetOnline:
    is_online: bool


@dataclass(frozen=True)
class SetKioskMode:
    mode: KioskMode


@dataclass(frozen=True)
class SelectDepartment:
    department_id: str | None


@dataclass(frozen=True)
class AddToCart:
    line: CartLine


@dataclass(frozen=True)
class RemoveFromCart:
    line_id: str


@dataclass(frozen=True)
class UpdateQuantity:
    line_id: str
    quantity: int


@dataclass(frozen=True)
class AddModifier:
    parent_line_id: str
    modifier: CartLine


@dataclass(frozen=True)
class RemoveModifier:
    parent_line_id: str
    modifier_line_id: str


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class ContinueAsGuest:
    pass


@dataclass(frozen=True)
class IdentifyMember:
    """Loyalty lookup succeeded; profile name parts pre-fill the name."""

    profile: LoyaltyProfile


@dataclass(frozen=True)
class SetCustomerName:
    name: str


@dataclass(frozen=True)
class ResetOrder:
    pass


Action = (
    SetCatalog
    | SetError
    | SetOnline
    | SetKioskMode
    | SelectDepartment
    | AddToCart
    | RemoveFromCart
    | UpdateQuantity
    | AddModifier
    | RemoveModifier
    | ClearCart
    | ContinueAsGuest
    | IdentifyMember
    | SetCustomerName
    | ResetOrder
)


def reduce(state: KioskState, action: Action) -> KioskState:
    """Return the state that results from applying ``action`` to ``state``."""
    if isinstance(action, SetCatalog):
        return replace(state, catalog=action.catalog, is_online=action.is_online)
    if isinstance(action, SetError):
        return replace(state, error=action.message)
    if isinstance(action, SetOnline):
        return replace(state, is_online=action.is_online)
    if isinstance(action, SetKioskMode):
        return replace(state, kiosk_mode=action.mode)
    if isinstance(action, SelectDepartment):
        return replace(state, selected_department_id=action.department_id)

    if isinstance(action, AddToCart):
        return replace(state, cart=cart_ops.add_line(state.cart, action.line))
    if isinstance(action, RemoveFromCart):
        return replace(state, cart=cart_ops.remove_line(state.cart, action.line_id))
    if isinstance(action, UpdateQuantity):
        return replace(state, cart=cart_ops.update_quantity(state.cart, action.line_id, action.quantity))
    if isinstance(action, AddModifier):
        return replace(state, cart=cart_ops.add_modifier(state.cart, action.parent_line_id, action.modifier))
    if isinstance(action, RemoveModifier):
        return replace(
            state, cart=cart_ops.remove_modifier(state.cart, action.parent_line_id, action.modifier_line_id)
        )
    if isinstance(action, ClearCart):
        return replace(state, cart=())

    if isinstance(action, ContinueAsGuest):
        return replace(state, customer=CustomerIdentity.guest())
    if isinstance(action, IdentifyMember):
        name = action.profile.full_name or state.customer_name
        return replace(state, customer=CustomerIdentity.member(action.profile), customer_name=name)
    if isinstance(action, SetCustomerName):
        return replace(state, customer_name=action.name.strip())

    if isinstance(action, ResetOrder):
        return replace(
            state,
            cart=(),
            customer=CustomerIdentity(),
            customer_name="",
            selected_department_id=None,
            error=None,
        )
    raise TypeError(f"Unknown action: {action!r}")


def filtered_items(state: KioskState) -> list[MenuItem]:
    """Menu items shown for the currently selected department."""
    if state.catalog is None:
        return []
    return orderable_items(state.catalog, state.selected_department_id)


def visible_departments(state: KioskState) -> list[Department]:
    if state.catalog is None:
        return []
    return _visible_departments(state.catalog)
