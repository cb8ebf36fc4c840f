"""
Aggregation View Builder

Read-only projections of a separation matrix for reporting:
- pre-separation view: materials x zones
- separation view: materials x stores, stores grouped by (zone, subzone)

Both views drop every row and column whose total is 0 and are rebuilt on
each request. Materials sort by description then code; stores and zones
follow the master-data order fields (missing or 0 last), never the
alphabet, except as a tie-breaker.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from master_data.models import Circuit, Store, TypeSeparation


# Order key for missing/0 order fields
_LAST = float("inf")


@dataclass(frozen=True)
class MatrixCell:
    """One persisted cell with the fields of its material row"""
    material_code: str
    description: str
    type_separation: str
    store_code: str
    quantity: int


@dataclass
class ViewColumn:
    key: str
    label: str
    zone: str
    subzone: str = ""
    order: Optional[int] = None
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "zone": self.zone,
            "subzone": self.subzone,
            "order": self.order,
            "total": self.total,
        }


@dataclass
class ViewRow:
    material_code: str
    description: str
    type_separation: str
    values: Dict[str, int] = field(default_factory=dict)
    group_totals: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.values.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_code": self.material_code,
            "description": self.description,
            "type_separation": self.type_separation,
            "values": dict(self.values),
            "group_totals": dict(self.group_totals),
            "total": self.total,
        }


@dataclass
class ColumnGroup:
    """A (zone, subzone) block of store columns"""
    zone: str
    subzone: str
    columns: List[str] = field(default_factory=list)
    total: int = 0

    @property
    def key(self) -> str:
        return f"{self.zone}/{self.subzone}" if self.subzone else self.zone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "zone": self.zone,
            "subzone": self.subzone,
            "columns": list(self.columns),
            "total": self.total,
        }


@dataclass
class AggregationView:
    view: str
    columns: List[ViewColumn] = field(default_factory=list)
    rows: List[ViewRow] = field(default_factory=list)
    groups: List[ColumnGroup] = field(default_factory=list)
    circuit: Optional[str] = None

    @property
    def grand_total(self) -> int:
        return sum(row.total for row in self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view": self.view,
            "circuit": self.circuit,
            "columns": [c.to_dict() for c in self.columns],
            "groups": [g.to_dict() for g in self.groups],
            "rows": [r.to_dict() for r in self.rows],
            "grand_total": self.grand_total,
        }


# =============================================================================
# Helpers
# =============================================================================

def _order_key(order: Optional[int]) -> float:
    return order if order else _LAST


def _type_allowed(type_tag: str, type_filter: Optional[Set[TypeSeparation]]) -> bool:
    if not type_filter:
        return True
    return TypeSeparation.parse(type_tag) in type_filter


def _row_sort_key(row: ViewRow) -> Tuple[str, str]:
    return (row.description.casefold(), row.material_code)


def _drop_zeros(rows: Dict[str, ViewRow], columns: Dict[str, ViewColumn]) -> Tuple[List[ViewRow], Dict[str, ViewColumn]]:
    """Remove zero cells, then zero rows and zero columns."""
    for column in columns.values():
        column.total = 0

    kept_rows = []
    for row in rows.values():
        row.values = {k: v for k, v in row.values.items() if v}
        if row.total == 0:
            continue
        kept_rows.append(row)
        for key, value in row.values.items():
            columns[key].total += value

    kept_columns = {key: col for key, col in columns.items() if col.total != 0}
    return sorted(kept_rows, key=_row_sort_key), kept_columns


# =============================================================================
# Pre-separation view
# =============================================================================

def build_pre_separation_view(
    cells: Iterable[MatrixCell],
    stores: Iterable[Store],
    type_filter: Optional[Set[TypeSeparation]] = None,
) -> AggregationView:
    """
    Materials x zones.

    FRIO materials are summed into the store's frio zone, everything else
    into its seco zone. Cells of stores unknown to master data, or without
    a zone for the material's circuit, are not shown.
    """
    store_map = {s.prefix: s for s in stores}

    zone_order: Dict[str, float] = {}
    for store in store_map.values():
        for circuit in (Circuit.SECO, Circuit.FRIO):
            zone = store.zone(circuit)
            if zone is None:
                continue
            zone_order[zone] = min(zone_order.get(zone, _LAST), _order_key(store.order(circuit)))

    rows: Dict[str, ViewRow] = {}
    columns: Dict[str, ViewColumn] = {}
    for cell in cells:
        if not _type_allowed(cell.type_separation, type_filter):
            continue
        store = store_map.get(cell.store_code)
        if store is None:
            continue
        zone = store.zone(Circuit.for_type(cell.type_separation))
        if zone is None:
            continue

        row = rows.setdefault(cell.material_code, ViewRow(
            material_code=cell.material_code,
            description=cell.description,
            type_separation=cell.type_separation,
        ))
        row.values[zone] = row.values.get(zone, 0) + cell.quantity
        if zone not in columns:
            order = zone_order.get(zone, _LAST)
            columns[zone] = ViewColumn(
                key=zone,
                label=zone,
                zone=zone,
                order=None if order == _LAST else int(order),
            )

    kept_rows, kept_columns = _drop_zeros(rows, columns)
    ordered = sorted(kept_columns.values(), key=lambda c: (_order_key(c.order), c.zone))

    return AggregationView(view="pre_separation", columns=ordered, rows=kept_rows)


# =============================================================================
# Separation view
# =============================================================================

def build_separation_view(
    cells: Iterable[MatrixCell],
    stores: Iterable[Store],
    circuit: Circuit = Circuit.SECO,
    type_filter: Optional[Set[TypeSeparation]] = None,
) -> AggregationView:
    """
    Materials x stores for one circuit, stores grouped by (zone, subzone).

    Args:
        cells: Matrix cells
        stores: Master store registry
        circuit: Circuit whose zone/subzone/order fields drive the grouping
        type_filter: Material types to include (None = all)
    """
    circuit = Circuit(circuit)
    visible: Dict[str, Store] = {
        s.prefix: s for s in stores if s.zone(circuit) is not None
    }

    rows: Dict[str, ViewRow] = {}
    columns: Dict[str, ViewColumn] = {}
    for cell in cells:
        if not _type_allowed(cell.type_separation, type_filter):
            continue
        store = visible.get(cell.store_code)
        if store is None:
            continue

        row = rows.setdefault(cell.material_code, ViewRow(
            material_code=cell.material_code,
            description=cell.description,
            type_separation=cell.type_separation,
        ))
        row.values[store.prefix] = row.values.get(store.prefix, 0) + cell.quantity
        if store.prefix not in columns:
            columns[store.prefix] = ViewColumn(
                key=store.prefix,
                label=store.name or store.prefix,
                zone=store.zone(circuit),
                subzone=store.subzone(circuit),
                order=store.order(circuit),
            )

    kept_rows, kept_columns = _drop_zeros(rows, columns)

    # Zones and subzones rank by the smallest order among their visible stores
    zone_rank: Dict[str, float] = defaultdict(lambda: _LAST)
    group_rank: Dict[Tuple[str, str], float] = defaultdict(lambda: _LAST)
    for col in kept_columns.values():
        key = _order_key(col.order)
        zone_rank[col.zone] = min(zone_rank[col.zone], key)
        group_rank[(col.zone, col.subzone)] = min(group_rank[(col.zone, col.subzone)], key)

    ordered = sorted(
        kept_columns.values(),
        key=lambda c: (
            zone_rank[c.zone], c.zone,
            group_rank[(c.zone, c.subzone)], c.subzone,
            _order_key(c.order), c.key,
        ),
    )

    groups: List[ColumnGroup] = []
    for col in ordered:
        if not groups or (groups[-1].zone, groups[-1].subzone) != (col.zone, col.subzone):
            groups.append(ColumnGroup(zone=col.zone, subzone=col.subzone))
        groups[-1].columns.append(col.key)
        groups[-1].total += col.total

    group_of = {key: group.key for group in groups for key in group.columns}
    for row in kept_rows:
        totals: Dict[str, int] = {}
        for key, value in row.values.items():
            totals[group_of[key]] = totals.get(group_of[key], 0) + value
        row.group_totals = totals

    return AggregationView(
        view="separation",
        columns=ordered,
        rows=kept_rows,
        groups=groups,
        circuit=circuit.value,
    )
