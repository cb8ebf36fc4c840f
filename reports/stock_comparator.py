"""Stock comparison for post-invoicing reports.

Compares the reference quantity captured before invoicing with the count
captured after it:

    delta = reference - current
    reference == current and reference > 0  -> Divergente
    any other pair                          -> OK
    no reference                            -> excluded
"""

from typing import Dict, Iterable, List

from reports.models import StockComparison, StockCount, StockReference, StockStatus


def classify(reference: float, current: float) -> StockStatus:
    if reference == current and reference > 0:
        return StockStatus.DIVERGENTE
    return StockStatus.OK


def compare_stock(
    references: Dict[str, StockReference],
    counts: Iterable[StockCount],
) -> List[StockComparison]:
    """
    Compare counts against references.

    Args:
        references: material_code -> reference
        counts: Post-invoicing counts

    Returns:
        One comparison per counted material that has a reference, sorted by code
    """
    results = []
    for count in counts:
        reference = references.get(count.material_code)
        if reference is None:
            continue

        results.append(StockComparison(
            material_code=count.material_code,
            description=count.description or reference.description,
            reference_quantity=reference.reference_quantity,
            current_quantity=count.current_quantity,
            quantity_kg=count.quantity_kg,
            delta=reference.reference_quantity - count.current_quantity,
            status=classify(reference.reference_quantity, count.current_quantity),
        ))

    results.sort(key=lambda c: c.material_code)
    return results
