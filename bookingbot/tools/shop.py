"""
Products and coupons offered through the chat menu.

Orders decrement stock under a single lock so two buyers cannot take the
last unit. Coupon claims are limited per customer.
"""

import logging
import secrets
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from bookingbot.errors import InsufficientStock, InvalidInput
from bookingbot.schemas.shop_schema import Coupon, CouponClaim, Product, ProductOrder

logger = logging.getLogger(__name__)

MAX_QUANTITY_PER_ORDER = 10


class InMemoryShop:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._products: dict[str, dict[str, Product]] = {}
        self._coupons: dict[str, dict[str, Coupon]] = {}
        self._orders: list[ProductOrder] = []
        self._claims: list[CouponClaim] = []
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def add_product(self, tenant_id: str, product: Product) -> None:
        with self._lock:
            self._products.setdefault(tenant_id, {})[product.id] = product

    def add_coupon(self, tenant_id: str, coupon: Coupon) -> None:
        with self._lock:
            self._coupons.setdefault(tenant_id, {})[coupon.id] = coupon

    def list_products(self, tenant_id: str) -> list[Product]:
        """Products currently on sale, in stock or not."""
        with self._lock:
            products = list(self._products.get(tenant_id, {}).values())
        return sorted((p for p in products if p.on_sale), key=lambda p: (p.sort_order, p.name))

    def get_product(self, tenant_id: str, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(tenant_id, {}).get(product_id)

    def max_quantity(self, product: Product) -> int:
        return min(product.stock, MAX_QUANTITY_PER_ORDER)

    def place_order(
        self,
        tenant_id: str,
        customer_id: str,
        product_id: str,
        quantity: int,
        commit_key: Optional[str] = None,
    ) -> ProductOrder:
        """
        Reserve stock and record an order.

        An order repeating an earlier ``commit_key`` returns that order
        without touching stock again.

        Raises:
            InvalidInput: Unknown or withdrawn product, or a bad quantity.
            InsufficientStock: Fewer than ``quantity`` units remain.
        """
        if not 1 <= quantity <= MAX_QUANTITY_PER_ORDER:
            raise InvalidInput(f"Quantity {quantity} out of range")
        with self._lock:
            if commit_key:
                for existing in self._orders:
                    if existing.tenant_id == tenant_id and existing.commit_key == commit_key:
                        return existing
            product = self._products.get(tenant_id, {}).get(product_id)
            if product is None or not product.on_sale:
                raise InvalidInput(f"Product {product_id} is not on sale")
            if product.stock < quantity:
                raise InsufficientStock(
                    f"{product.name}: {product.stock} left, {quantity} requested"
                )
            self._products[tenant_id][product_id] = product.model_copy(
                update={"stock": product.stock - quantity}
            )
            order = ProductOrder(
                id=str(uuid.uuid4()),
                order_no=f"OD-{uuid.uuid4().hex[:8].upper()}",
                tenant_id=tenant_id,
                customer_id=customer_id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=product.price,
                total=product.price * quantity,
                created_at=self._clock(),
                commit_key=commit_key,
            )
            self._orders.append(order)
        logger.info("Order %s placed: %d x %s", order.order_no, quantity, product.name)
        return order

    def orders_for(self, tenant_id: str, customer_id: str) -> list[ProductOrder]:
        with self._lock:
            return [
                o for o in self._orders
                if o.tenant_id == tenant_id and o.customer_id == customer_id
            ]

    def list_coupons(self, tenant_id: str) -> list[Coupon]:
        """Published, unexpired coupons."""
        now = self._clock()
        with self._lock:
            coupons = list(self._coupons.get(tenant_id, {}).values())
        return [
            c for c in coupons
            if c.published and (c.expires_at is None or c.expires_at > now)
        ]

    def claim_coupon(self, tenant_id: str, customer_id: str, coupon_id: str) -> CouponClaim:
        """
        Issue a claim code for a coupon.

        Raises:
            InvalidInput: Unknown coupon, or the customer already used up their claims.
        """
        with self._lock:
            coupon = self._coupons.get(tenant_id, {}).get(coupon_id)
            if coupon is None or not coupon.published:
                raise InvalidInput(f"Coupon {coupon_id} not available")
            held = sum(
                1 for c in self._claims
                if c.tenant_id == tenant_id and c.coupon_id == coupon_id
                and c.customer_id == customer_id
            )
            if held >= coupon.limit_per_customer:
                raise InvalidInput(
                    f"Customer {customer_id} already claimed {coupon_id}",
                    user_message=f"You have already claimed {coupon.name}.",
                )
            claim = CouponClaim(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                coupon_id=coupon_id,
                customer_id=customer_id,
                code=secrets.token_hex(4).upper(),
                claimed_at=self._clock(),
            )
            self._claims.append(claim)
        logger.info("Coupon %s claimed by %s", coupon_id, customer_id)
        return claim
