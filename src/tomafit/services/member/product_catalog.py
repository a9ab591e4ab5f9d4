# tomafit/services/member/product_catalog.py

from dataclasses import dataclass
from typing import Iterable, List, Optional
from tomafit.constants.product_constants import MEMBER_PRODUCTS
from tomafit.services.exceptions import NotFoundError

@dataclass(frozen=True)
class Product:
    id: str
    display_name: str
    price_minor_units: int
    duration_days: int
    original_price_minor_units: int = 0
    recommended: bool = False

    def __post_init__(self):
        if self.duration_days < 1:
            raise ValueError(f"Product '{self.id}' must last at least one day.")
        if self.price_minor_units <= 0:
            raise ValueError(f"Product '{self.id}' must have a positive price.")

class ProductCatalog:
    """静态的会员商品目录，进程内只读。"""

    def __init__(self, products: Iterable[Product]):
        self._products = {}
        for product in products:
            if product.id in self._products:
                raise ValueError(f"Duplicate product id '{product.id}'.")
            self._products[product.id] = product

    def list(self) -> List[Product]:
        return list(self._products.values())

    def find(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def get(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise NotFoundError(f"Unknown product '{product_id}'.", product_id=product_id)
        return product

    @classmethod
    def default(cls) -> "ProductCatalog":
        return cls(Product(**entry) for entry in MEMBER_PRODUCTS)

product_catalog = ProductCatalog.default()
