"""Filtering, sorting and paging of DTO lists, driven by the dashboard's query parameters.

``filterBy=name,nginx,namespace,default`` keeps items whose name contains ``nginx``
and whose namespace is ``default``. ``sortBy=d,creationTimestamp,a,name`` sorts by
creation time descending then name ascending. ``itemsPerPage``/``page`` page the result
(``page`` is 1-based). Items are dashboard DTOs, i.e. dicts carrying ``objectMeta``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Query

from karmada_dashboard.exceptions import BadRequestError


@dataclass
class SortBy:
    prop: str
    ascending: bool = True


@dataclass
class DataSelectQuery:
    items_per_page: int | None = None
    page: int = 1
    sort_by: list[SortBy] = field(default_factory=list)
    filter_by: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def parse(cls, items_per_page: str | None = None, page: str | None = None, sort_by: str | None = None, filter_by: str | None = None) -> "DataSelectQuery":
        ipp = _parse_int(items_per_page, "itemsPerPage")
        pg = _parse_int(page, "page")
        sorts: list[SortBy] = []
        if sort_by:
            parts = [p for p in sort_by.split(",") if p != ""]
            if len(parts) % 2:
                raise BadRequestError(f"invalid sortBy: {sort_by}")
            for direction, prop in zip(parts[::2], parts[1::2]):
                if direction not in ("a", "d"):
                    raise BadRequestError(f"invalid sort direction: {direction}")
                sorts.append(SortBy(prop=prop, ascending=direction == "a"))
        filters: list[tuple[str, str]] = []
        if filter_by:
            parts = filter_by.split(",")
            if len(parts) % 2:
                raise BadRequestError(f"invalid filterBy: {filter_by}")
            filters = [(prop, value) for prop, value in zip(parts[::2], parts[1::2]) if value != ""]
        return cls(
            items_per_page=ipp if ipp and ipp > 0 else None,
            page=pg if pg and pg > 0 else 1,
            sort_by=sorts,
            filter_by=filters,
        )


def _parse_int(value: str | None, name: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise BadRequestError(f"invalid {name}: {value}") from exc


def get_data_select(
    items_per_page: str | None = Query(default=None, alias="itemsPerPage"),
    page: str | None = Query(default=None),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    filter_by: str | None = Query(default=None, alias="filterBy"),
) -> DataSelectQuery:
    return DataSelectQuery.parse(items_per_page, page, sort_by, filter_by)


def property_value(item: dict[str, Any], prop: str) -> Any:
    meta = item.get("objectMeta") or {}
    if prop == "name":
        return meta.get("name") or ""
    if prop == "namespace":
        return meta.get("namespace") or ""
    if prop == "creationTimestamp":
        return meta.get("creationTimestamp") or ""
    if prop == "cluster":
        return (meta.get("labels") or {}).get("cluster", "")
    value = item.get(prop)
    return "" if value is None else value


def _matches(item: dict[str, Any], filters: list[tuple[str, str]]) -> bool:
    for prop, expected in filters:
        actual = property_value(item, prop)
        if prop == "name":
            if expected not in str(actual):
                return False
        elif str(actual) != expected:
            return False
    return True


def apply(items: list[dict[str, Any]], query: DataSelectQuery | None) -> tuple[list[dict[str, Any]], int]:
    """Filter, sort and page ``items``. Returns the page and the filtered total."""
    if query is None:
        return list(items), len(items)
    selected = [i for i in items if _matches(i, query.filter_by)]
    # stable sorts applied from the least significant key
    for sort in reversed(query.sort_by):
        selected.sort(key=lambda i, p=sort.prop: str(property_value(i, p)), reverse=not sort.ascending)
    total = len(selected)
    if query.items_per_page:
        start = (query.page - 1) * query.items_per_page
        selected = selected[start:start + query.items_per_page]
    return selected, total
