from __future__ import annotations

from salesdesk.domain.errors import UnknownProductError
from salesdesk.domain.models import Product


class CatalogService:
    def __init__(self, repo):
        self.repo = repo

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise UnknownProductError(f"Unknown product: {product_id}")
        return p

    def catalog(self) -> dict[int, Product]:
        """Snapshot of the catalog keyed by product id."""
        return {p.id: p for p in self.repo.list_products()}
