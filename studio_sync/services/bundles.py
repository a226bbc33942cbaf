from __future__ import annotations

from ..models.classification import (
    LEVEL_CLASSES,
    SOLO_CLASSES,
    ClassificationResult,
    ClassName,
    Role,
)
from ..models.orders import RawLineItem, RawOrder
from .classifier import classify, is_bundle_title

"""Bundle expansion: one bundle line item -> one result per included class."""

__all__ = [
    "BUNDLE_CLASSES",
    "expand",
]

BUNDLE_CLASSES: tuple[ClassName, ...] = LEVEL_CLASSES + SOLO_CLASSES


def expand(item: RawLineItem, order: RawOrder | None = None) -> list[ClassificationResult]:
    """Expand a bundle line item into per-class classification results.

    Level classes take the bundle's role and are dropped when the bundle
    variant names no role. Body Movement and Shines are always emitted with
    no role. Every result inherits the bundle's term and block. Non-bundle
    items expand to an empty list.

    `order` is accepted for call-site symmetry with the projector; expansion
    depends on the line item alone.
    """
    if not is_bundle_title(item.title):
        return []
    bundle = classify(item.title, item.variant_title)
    results: list[ClassificationResult] = []
    for class_name in BUNDLE_CLASSES:
        if class_name in SOLO_CLASSES:
            role = Role.NO_ROLE
        elif bundle.role.is_dance_role:
            role = bundle.role
        else:
            continue
        results.append(
            ClassificationResult(
                class_name=class_name,
                term=bundle.term,
                block=bundle.block,
                role=role,
            )
        )
    return results
