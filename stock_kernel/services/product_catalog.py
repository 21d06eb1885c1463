"""
ProductCatalog -- read-only view of the external product master.

The ledger treats product ids as opaque.  When a catalog is injected,
writers refuse unknown products and reports carry code/name/category.
"""

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from stock_kernel.domain.dtos import ProductInfo
from stock_kernel.exceptions import ProductNotFoundError


@runtime_checkable
class ProductCatalog(Protocol):
    def describe(self, product_id: str) -> ProductInfo | None:
        """Return reference data for a product, or None if unknown."""
        ...


class StaticProductCatalog:
    """In-memory catalog for tools and tests."""

    def __init__(self, products: Iterable[ProductInfo] = ()):
        self._products: dict[str, ProductInfo] = {p.product_id: p for p in products}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, tuple[str, str]]) -> "StaticProductCatalog":
        """Build from ``{product_id: (code, name)}``."""
        return cls(
            ProductInfo(product_id=pid, code=code, name=name)
            for pid, (code, name) in mapping.items()
        )

    def add(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    def describe(self, product_id: str) -> ProductInfo | None:
        return self._products.get(product_id)


def require_product(catalog: ProductCatalog | None, product_id: str) -> ProductInfo | None:
    """Resolve a product when a catalog is configured.

    Raises:
        ProductNotFoundError: If a catalog is configured and does not know the product.
    """
    if catalog is None:
        return None
    info = catalog.describe(product_id)
    if info is None:
        raise ProductNotFoundError(product_id)
    return info
