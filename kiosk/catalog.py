"""Menu snapshot parsing and catalog lookups."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from kiosk.models import (
    BusinessInfo,
    CatalogSnapshot,
    Department,
    MenuItem,
    ModifierGroup,
    ModifierGroupLink,
    TaxRate,
)
from kiosk.money import to_cents, to_rate

_VISIBLE_FLAGS = {"OK", "Y"}
_TAXABLE_FLAG = "OK"


@dataclass(frozen=True)
class ResolvedModifierGroup:
    """A modifier group as it applies to one item, with link overrides applied."""

    group: ModifierGroup
    max_select: int
    forced: bool
    choices: tuple[MenuItem, ...]


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().upper() in _VISIBLE_FLAGS


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def parse_item(row: Mapping[str, Any]) -> MenuItem:
    return MenuItem(
        item_id=str(row["itemId"]),
        name=str(row.get("itemName") or row["itemId"]),
        price_cents=to_cents(row.get("itemPrice")),
        taxable=str(row.get("tax1Status") or "").upper() == _TAXABLE_FLAG,
        tax_rate=to_rate(row.get("taxRate")),
        department_id=_optional_str(row.get("itemDeptId")),
        is_modifier=bool(row.get("isModifier")),
        visible=_flag(row.get("visible")),
        is_deleted=bool(row.get("isDeleted")),
        price_prompt=_flag(row.get("pricePrompt")),
    )


def parse_department(row: Mapping[str, Any]) -> Department:
    return Department(
        department_id=str(row["deptId"]),
        name=str(row.get("deptName") or row["deptId"]),
        visible=_flag(row.get("visible")),
        list_order=_optional_int(row.get("listOrder")),
        tax_rate=to_rate(row.get("taxRate")),
    )


def parse_modifier_group(row: Mapping[str, Any]) -> ModifierGroup:
    return ModifierGroup(
        group_id=int(row["modifierGroupId"]),
        name=str(row.get("groupName") or ""),
        prompt=_optional_str(row.get("promptName")),
        max_select=_optional_int(row.get("maximumSelect")) or 0,
        forced=bool(row.get("forced")),
        hidden=bool(row.get("hide")),
    )


def parse_modifier_link(row: Mapping[str, Any]) -> ModifierGroupLink:
    forced = row.get("forced")
    if forced is None:
        forced = row.get("isRequired")
    return ModifierGroupLink(
        item_id=str(row["itemId"]),
        group_id=int(row["modifierGroupId"]),
        max_select=_optional_int(row.get("maximumSelect")),
        forced=None if forced is None else bool(forced),
    )


def parse_business_info(row: Mapping[str, Any]) -> BusinessInfo:
    footers = tuple(
        str(row[key]) for key in ("footer1", "footer2", "footer3", "footer4") if _optional_str(row.get(key))
    )
    return BusinessInfo(
        store_id=str(row.get("storeId") or ""),
        name=_optional_str(row.get("businessName")),
        address=_optional_str(row.get("businessAddress")),
        city_state_zip=_optional_str(row.get("cityStateZip")),
        phone=_optional_str(row.get("businessPhone")),
        footer_lines=footers,
    )


def parse_tax_rates(rows: Iterable[Mapping[str, Any]]) -> tuple[TaxRate, ...]:
    rates = []
    for row in rows:
        rate = to_rate(row.get("taxRate"))
        if rate is None:
            continue
        rates.append(TaxRate(tax_id=int(row.get("taxNo") or 0), rate=rate))
    return tuple(rates)


def parse_catalog(payload: Mapping[str, Any], tax_rates: Iterable[TaxRate] = ()) -> CatalogSnapshot:
    """Build an immutable snapshot from a backend menu payload."""
    business_rows = payload.get("businessInfo") or []
    if isinstance(business_rows, Mapping):
        business_rows = [business_rows]
    return CatalogSnapshot(
        departments=tuple(parse_department(row) for row in payload.get("departments") or []),
        items=tuple(
            item for item in (parse_item(row) for row in payload.get("items") or []) if not item.is_deleted
        ),
        modifier_groups=tuple(parse_modifier_group(row) for row in payload.get("modifierGroups") or []),
        modifier_links=tuple(parse_modifier_link(row) for row in payload.get("modifiersOfItems") or []),
        business_info=parse_business_info(business_rows[0]) if business_rows else None,
        tax_rates=tuple(tax_rates),
    )


def visible_departments(catalog: CatalogSnapshot) -> list[Department]:
    """Visible departments in list order; unordered ones last."""
    departments = [dept for dept in catalog.departments if dept.visible]
    departments.sort(key=lambda dept: (dept.list_order is None, dept.list_order or 0))
    return departments


def orderable_items(catalog: CatalogSnapshot, department_id: str | None = None) -> list[MenuItem]:
    """Items shown on the menu, optionally restricted to one department."""
    return [
        item
        for item in catalog.items
        if item.visible
        and not item.is_modifier
        and (department_id is None or item.department_id == department_id)
    ]


def find_item(catalog: CatalogSnapshot, item_id: str) -> MenuItem | None:
    for item in catalog.items:
        if item.item_id == item_id:
            return item
    return None


def effective_tax_rate(catalog: CatalogSnapshot | None, item: MenuItem) -> Decimal | None:
    """Resolve the rate snapshotted into a cart line.

    Resolution order: the item's own rate, its department's rate, then the
    store's first tax rate.
    """
    if item.tax_rate is not None:
        return item.tax_rate
    if catalog is None:
        return None
    for dept in catalog.departments:
        if dept.department_id == item.department_id and dept.tax_rate is not None:
            return dept.tax_rate
    if catalog.tax_rates:
        return catalog.tax_rates[0].rate
    return None


def modifier_groups_for_item(catalog: CatalogSnapshot, item_id: str) -> list[ResolvedModifierGroup]:
    """Modifier groups linked to an item, with their selectable choices."""
    groups_by_id = {group.group_id: group for group in catalog.modifier_groups}
    modifier_ids_by_group: dict[int, list[str]] = {}
    items_by_id = {item.item_id: item for item in catalog.items}
    for link in catalog.modifier_links:
        linked = items_by_id.get(link.item_id)
        if linked is not None and linked.is_modifier:
            modifier_ids_by_group.setdefault(link.group_id, []).append(link.item_id)

    resolved: list[ResolvedModifierGroup] = []
    for link in catalog.modifier_links:
        if link.item_id != item_id:
            continue
        group = groups_by_id.get(link.group_id)
        if group is None or group.hidden:
            continue
        choices = tuple(items_by_id[mod_id] for mod_id in modifier_ids_by_group.get(group.group_id, []))
        resolved.append(
            ResolvedModifierGroup(
                group=group,
                max_select=link.max_select if link.max_select is not None else group.max_select,
                forced=link.forced if link.forced is not None else group.forced,
                choices=choices,
            )
        )
    return resolved
