"""
Erreurs métier du coeur commandes / stock.

Toutes sont levées par la couche services et remontées telles quelles ;
la couche API les traduit en réponses HTTP (voir orderdesk.app.api.errors).
Seule ConcurrencyConflict peut être rejouée automatiquement.
"""

from __future__ import annotations

from decimal import Decimal


class OrderDeskError(Exception):
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProductNotFound(OrderDeskError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class ProductInactive(OrderDeskError):
    def __init__(self, product_id: int, name: str | None = None):
        label = name or str(product_id)
        super().__init__(f"Product {label} is not available")
        self.product_id = product_id


class UnitMismatch(OrderDeskError):
    def __init__(self, requested_unit, base_unit):
        super().__init__(f"Cannot convert {_unit(requested_unit)} to {_unit(base_unit)}")
        self.requested_unit = requested_unit
        self.base_unit = base_unit


class InsufficientStock(OrderDeskError):
    def __init__(self, product_id: int, available: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Required: {required}"
        )
        self.product_id = product_id
        self.available = available
        self.required = required


class NegativeStockRejected(OrderDeskError):
    def __init__(self, product_id: int, current: Decimal, delta: Decimal):
        super().__init__(
            f"Stock adjustment of {delta} would make stock of product {product_id} negative (current={current})"
        )
        self.product_id = product_id
        self.current = current
        self.delta = delta


class OrderNotFound(OrderDeskError):
    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvalidTransition(OrderDeskError):
    def __init__(self, current, attempted):
        super().__init__(f"Invalid status transition from {_unit(current)} to {_unit(attempted)}")
        self.current = current
        self.attempted = attempted


class ConcurrencyConflict(OrderDeskError):
    retryable = True


class AccessDenied(OrderDeskError):
    pass


class InvalidOrderRequest(OrderDeskError):
    pass


class BusinessRuleViolation(OrderDeskError):
    def __init__(self, message: str, issues: list[str]):
        super().__init__(message)
        self.issues = issues


class DuplicateSku(OrderDeskError):
    def __init__(self, sku: str):
        super().__init__(f"SKU {sku} already exists")
        self.sku = sku


class ProductLocked(OrderDeskError):
    def __init__(self, product_id: int, fields: list[str]):
        super().__init__(
            f"Product {product_id} is referenced by orders; cannot change {', '.join(sorted(fields))}"
        )
        self.product_id = product_id
        self.fields = fields


def _unit(value) -> str:
    return getattr(value, "value", str(value))
