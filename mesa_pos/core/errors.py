"""Operator-facing error taxonomy for the order ledger."""
from __future__ import annotations

from typing import Iterable, Sequence


class PosError(Exception):
    """Base class; ``message`` is what the terminal shows to staff."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# --- validation -------------------------------------------------------------


class ValidationError(PosError, ValueError):
    pass


class ProductNotFoundError(ValidationError):
    def __init__(self, product_id) -> None:
        super().__init__(f"product {product_id} is not on the menu")
        self.product_id = product_id


class LineItemNotFoundError(ValidationError):
    def __init__(self, line_item_ids: Iterable[int]) -> None:
        ids = sorted(int(i) for i in line_item_ids)
        super().__init__(f"order line(s) not found: {', '.join(map(str, ids))}")
        self.line_item_ids = ids


class CashierSessionNotFoundError(ValidationError):
    def __init__(self, session_id) -> None:
        super().__init__(f"cash register session {session_id} does not exist")
        self.session_id = session_id


# --- conflicts --------------------------------------------------------------


class ConflictError(PosError):
    pass


class NotAvailableError(ConflictError):
    _MESSAGES = {
        "table": "no tables available",
        "bar": "no bar seats available",
    }

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(message or self._MESSAGES.get(kind, f"no {kind} available"))
        self.kind = kind


class TableNotFoundError(ConflictError):
    def __init__(self, ref) -> None:
        super().__init__(f"table {ref} does not exist")
        self.ref = ref


class AlreadyOpenError(ConflictError):
    def __init__(self, session_id: int | None = None) -> None:
        super().__init__("a cash register session is already open")
        self.session_id = session_id


class CashierNotOpenError(ConflictError):
    def __init__(self, message: str = "cash register not open") -> None:
        super().__init__(message)


class AlreadySettledError(ConflictError):
    def __init__(self, line_item_ids: Iterable[int]) -> None:
        ids = sorted(int(i) for i in line_item_ids)
        super().__init__(f"order line(s) already settled or cancelled: {', '.join(map(str, ids))}")
        self.line_item_ids = ids


# --- partial failure --------------------------------------------------------


class ReconciliationError(PosError):
    """Settlement left the tab half paid; the operator must reconcile it."""

    def __init__(
        self,
        occupant: str,
        settled_ids: Sequence[int],
        unsettled_ids: Sequence[int],
        invoice_number: str = "",
    ) -> None:
        settled = ", ".join(map(str, settled_ids)) or "none"
        unsettled = ", ".join(map(str, unsettled_ids))
        super().__init__(
            f"tab '{occupant}' is partially settled: paid lines [{settled}], "
            f"still pending [{unsettled}]"
        )
        self.occupant = occupant
        self.settled_ids = list(settled_ids)
        self.unsettled_ids = list(unsettled_ids)
        self.invoice_number = invoice_number


# --- best effort ------------------------------------------------------------


class InventoryError(PosError):
    pass
