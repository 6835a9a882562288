from typing import Any, Dict, List, Tuple

from starlette.concurrency import run_in_threadpool

from currency import localize_cart
from errors import InvalidQuantity, NotFound
from observability import get_logger
from repositories import CartRepo, ProductRepo

logger = get_logger(__name__)


class CartService:
    """At most one cart line per product; quantities are checked against stock, never reserved."""

    def __init__(self, carts: CartRepo, products: ProductRepo, converter):
        self.carts = carts
        self.products = products
        self.converter = converter

    def add_product(self, user_id: str, product_id: str, quantity: int) -> Tuple[List[Dict[str, Any]], bool]:
        """Set the cart quantity of a product. Returns (cart, created) where created is
        False when an existing line was replaced."""
        product = self.products.get_by_id(product_id)
        stock = product.get("available_quantity") or 0
        if quantity <= 0 or quantity > stock:
            raise InvalidQuantity("Product not available in the requested quantity")

        cart, created = self.carts.set_quantity(user_id, product["_id"], quantity)
        if created:
            logger.info("Product added to cart", user_id=user_id, product_id=product_id, quantity=quantity)
        else:
            logger.info("Cart quantity updated", user_id=user_id, product_id=product_id, quantity=quantity)
        return cart, created

    def remove_product(self, user_id: str, product_id: str) -> List[Dict[str, Any]]:
        lines = self.carts.get_cart_lines(user_id)
        match = next((line for line in lines if str(line["product"]) == product_id), None)
        if match is None:
            raise NotFound("Product not found in cart")
        return self.carts.remove_product(user_id, match["product"])

    async def get_cart(self, user_id: str, currency: str) -> List[Dict[str, Any]]:
        lines = await run_in_threadpool(self.carts.get_user_cart, user_id)
        return await localize_cart(lines, currency, self.converter)
