"""Cart composition: line creation, merge-on-add, and modifier selection."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Iterable

from kiosk.catalog import ResolvedModifierGroup
from kiosk.errors import ValidationError
from kiosk.models import CartLine, MenuItem

Cart = tuple[CartLine, ...]


class LineIdGenerator:
    """Issue ``<epoch-ms><4-digit counter>`` ids that never repeat in a session."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counter = 0
        self._last = 0

    def __call__(self) -> str:
        self._counter = (self._counter + 1) % 10000
        candidate = int(f"{int(self._clock() * 1000)}{self._counter:04d}")
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return str(candidate)


generate_line_id = LineIdGenerator()


def new_line(
    item: MenuItem,
    modifiers: Iterable[CartLine] = (),
    *,
    quantity: int = 1,
    tax_rate: Decimal | None = None,
    price_override_cents: int | None = None,
    line_id: str | None = None,
) -> CartLine:
    """Create a top-level line holding a snapshot of ``item``."""
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    return CartLine(
        line_id=line_id or generate_line_id(),
        item=item,
        quantity=quantity,
        price_override_cents=price_override_cents,
        tax_rate=tax_rate if tax_rate is not None else item.tax_rate,
        modifiers=tuple(modifiers),
    )


def new_modifier_line(item: MenuItem, parent_item_id: str, *, quantity: int = 1) -> CartLine:
    return CartLine(
        line_id=generate_line_id(),
        item=item,
        quantity=quantity,
        tax_rate=item.tax_rate,
        is_modifier=True,
        parent_item_id=parent_item_id,
    )


def _is_bare(line: CartLine) -> bool:
    return not line.is_modifier and not line.modifiers


def add_line(cart: Cart, line: CartLine) -> Cart:
    """Append ``line``, or bump the quantity of an identical bare line."""
    if _is_bare(line):
        for idx, existing in enumerate(cart):
            if (
                _is_bare(existing)
                and existing.item.item_id == line.item.item_id
                and existing.price_override_cents == line.price_override_cents
            ):
                merged = replace(existing, quantity=existing.quantity + line.quantity)
                return cart[:idx] + (merged,) + cart[idx + 1 :]
    return cart + (line,)


def remove_line(cart: Cart, line_id: str) -> Cart:
    return tuple(line for line in cart if line.line_id != line_id)


def update_quantity(cart: Cart, line_id: str, quantity: int) -> Cart:
    """Set a line's quantity; zero or below removes the line."""
    if quantity <= 0:
        return remove_line(cart, line_id)
    return tuple(replace(line, quantity=quantity) if line.line_id == line_id else line for line in cart)


def add_modifier(cart: Cart, parent_line_id: str, modifier: CartLine) -> Cart:
    return tuple(
        replace(line, modifiers=line.modifiers + (modifier,)) if line.line_id == parent_line_id else line
        for line in cart
    )


def remove_modifier(cart: Cart, parent_line_id: str, modifier_line_id: str) -> Cart:
    return tuple(
        replace(line, modifiers=tuple(mod for mod in line.modifiers if mod.line_id != modifier_line_id))
        if line.line_id == parent_line_id
        else line
        for line in cart
    )


def cart_item_count(cart: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in cart)


@dataclass
class ModifierSelection:
    """Modifier choices for an item that has not been added to the cart yet."""

    item: MenuItem
    groups: list[ResolvedModifierGroup]
    selected: dict[int, list[str]] = field(default_factory=dict)

    def _group(self, group_id: int) -> ResolvedModifierGroup:
        for group in self.groups:
            if group.group.group_id == group_id:
                return group
        raise KeyError(f"Unknown modifier group {group_id} for item {self.item.item_id}")

    def toggle(self, group_id: int, modifier_item_id: str) -> list[str]:
        """Select or deselect a choice; at the cap the newest choice replaces the last one."""
        group = self._group(group_id)
        current = list(self.selected.get(group_id, []))
        if modifier_item_id in current:
            current.remove(modifier_item_id)
        elif group.max_select > 0 and len(current) >= group.max_select:
            current = current[:-1] + [modifier_item_id]
        else:
            current.append(modifier_item_id)
        self.selected[group_id] = current
        return current

    def missing_required_groups(self) -> list[int]:
        return [
            group.group.group_id
            for group in self.groups
            if group.forced and not self.selected.get(group.group.group_id)
        ]

    def selected_items(self) -> list[MenuItem]:
        choices = {choice.item_id: choice for group in self.groups for choice in group.choices}
        return [
            choices[mod_id]
            for group in self.groups
            for mod_id in self.selected.get(group.group.group_id, [])
            if mod_id in choices
        ]

    def build_lines(self, parent_line_id: str) -> tuple[CartLine, ...]:
        """Modifier lines for the pending item, in group then selection order."""
        missing = self.missing_required_groups()
        if missing:
            names = ", ".join(self._group(group_id).group.name or str(group_id) for group_id in missing)
            raise ValidationError(f"Please make a selection for: {names}")
        return tuple(new_modifier_line(mod, parent_line_id) for mod in self.selected_items())

    def preview_total_cents(self, quantity: int = 1) -> int:
        base = self.item.price_cents or 0
        return (base + sum(mod.price_cents or 0 for mod in self.selected_items())) * quantity
