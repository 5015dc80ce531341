"""Parent/child association helpers.

Associations have a single owning direction: the parent holds the child
collection. The child keeps only the parent's identity (``<parent>_id``),
never a reference to the parent object, so there is no ownership cycle.
Both sides are updated together through ``link`` and ``unlink``:

    link(order, line, collection="lines")       # order.lines += [line]; line.order_id = order.id
    unlink(order, line, collection="lines")     # removed; line.order_id = None

    children_of(order, all_lines)               # lookup by identity, not by pointer
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from transactional_events.core.exceptions import AssociationError
from transactional_events.core.lifecycle.hooks import entity_type_name


def back_reference_name(parent: Any) -> str:
    """Name of the identity attribute children hold for ``parent`` ("order_id")."""
    return f"{entity_type_name(parent)}_id"


def _identity(parent: Any) -> Any:
    identity = getattr(parent, "id", None)
    if identity is None:
        raise AssociationError(
            f"{type(parent).__name__} has no id yet; persist it before linking children",
            type="parent-without-identity",
            extra={"parent_type": type(parent).__name__},
        )
    return identity


def _position(items: Iterable[Any], child: Any) -> int | None:
    for index, item in enumerate(items):
        if item is child:
            return index
    return None


def link(parent: Any, child: Any, *, collection: str, back_ref: str | None = None) -> None:
    """Attach ``child`` to ``parent`` on both sides.

    Linking a child that is already in the collection is a no-op.

    Raises:
        AssociationError: If the parent has no identity yet, or the child is
            already linked to a different parent.
    """
    back_ref = back_ref or back_reference_name(parent)
    identity = _identity(parent)
    children = getattr(parent, collection)

    current = getattr(child, back_ref, None)
    if current is not None and current != identity:
        raise AssociationError(
            f"Child already linked to {back_ref}={current}; unlink it first",
            type="already-linked",
            extra={"back_ref": back_ref, "current": current, "requested": identity},
        )

    if _position(children, child) is None:
        children.append(child)
    setattr(child, back_ref, identity)


def unlink(parent: Any, child: Any, *, collection: str, back_ref: str | None = None) -> None:
    """Detach ``child`` from ``parent`` on both sides.

    Raises:
        AssociationError: If ``child`` is not in the parent's collection.
    """
    back_ref = back_ref or back_reference_name(parent)
    children = getattr(parent, collection)
    index = _position(children, child)
    if index is None:
        raise AssociationError(
            f"Child is not linked to this {type(parent).__name__}",
            type="not-linked",
            extra={"collection": collection},
        )
    del children[index]
    setattr(child, back_ref, None)


def children_of(parent: Any, candidates: Iterable[Any], *, back_ref: str | None = None) -> list[Any]:
    """Candidates whose back-reference holds ``parent``'s identity."""
    back_ref = back_ref or back_reference_name(parent)
    identity = _identity(parent)
    return [c for c in candidates if getattr(c, back_ref, None) == identity]


__all__ = ["back_reference_name", "children_of", "link", "unlink"]
