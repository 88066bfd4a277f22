# storefront/services/validation_service.py
from decimal import Decimal
from typing import Mapping

from storefront.domain.schemas import (
    CartSnapshot,
    CatalogProduct,
    IssueType,
    ValidationIssue,
    ValidationResult,
)
from storefront.services.cart_store import CartStore
from storefront.services.catalog_service import CatalogService, CatalogView
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

PRICE_TOLERANCE = Decimal("0.01")


class ValidationService:
    """
    Checks a cart snapshot against live catalog data before checkout hand-off.
    validate() never mutates the cart; reconcile() applies fixes on request.
    """

    def __init__(self, price_tolerance: Decimal = PRICE_TOLERANCE):
        self.price_tolerance = price_tolerance

    def validate(
        self,
        snapshot: CartSnapshot,
        catalog: Mapping[str, CatalogProduct],
    ) -> ValidationResult:
        issues = []
        for item in snapshot.items:
            name = item.display.name or item.id
            product = catalog.get(item.id)

            if product is None:
                issues.append(
                    ValidationIssue(
                        product_id=item.id,
                        type=IssueType.NOT_FOUND,
                        message=f"{name} was not found",
                    )
                )
                continue

            if not product.is_active:
                issues.append(
                    ValidationIssue(
                        product_id=item.id,
                        type=IssueType.PRODUCT_INACTIVE,
                        message=f"{name} is no longer available",
                    )
                )
                continue

            if item.quantity > product.available_quantity:
                issues.append(
                    ValidationIssue(
                        product_id=item.id,
                        type=IssueType.INSUFFICIENT_STOCK,
                        message=f"{name}: only {product.available_quantity} unit(s) available",
                        available_quantity=product.available_quantity,
                    )
                )

            if abs(product.price - item.price) > self.price_tolerance:
                issues.append(
                    ValidationIssue(
                        product_id=item.id,
                        type=IssueType.PRICE_CHANGED,
                        message=f"{name}: price changed from {item.price} to {product.price}",
                        old_price=item.price,
                        new_price=product.price,
                    )
                )

        if issues:
            logger.info(f"Cart {snapshot.session_id} has {len(issues)} issue(s)")
        return ValidationResult(issues=issues)

    async def check_cart(self, store: CartStore, catalog: CatalogService) -> tuple[ValidationResult, CatalogView]:
        view = await catalog.fresh_view()
        return self.validate(store.snapshot(), view.by_id()), view

    def reconcile(self, store: CartStore, result: ValidationResult) -> CartSnapshot:
        """
        Auto-fix: drop missing/inactive items, cap quantities to stock,
        take the live price.
        """
        for issue in result.issues:
            if issue.type in (IssueType.NOT_FOUND, IssueType.PRODUCT_INACTIVE):
                store.remove_item(issue.product_id)
            elif issue.type == IssueType.INSUFFICIENT_STOCK:
                store.update_quantity(issue.product_id, issue.available_quantity or 0)
            elif issue.type == IssueType.PRICE_CHANGED and issue.new_price is not None:
                store.reprice(issue.product_id, issue.new_price)
        return store.snapshot()
