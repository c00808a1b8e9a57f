"""
Shopping carts.

A signed-in shopper's cart lives in the ``cart`` collection (ServerBackedCart);
a guest's cart is held by the caller and never persisted (LocalCart). Both
variants share the Cart interface and the same line-merging rules: one line per
(product, size), quantities add up, and a line whose quantity drops to zero or
below is removed rather than stored.
"""
import copy
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import structlog
from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from catalog import get_product
from database import to_object_id, utcnow
from errors import CartConflictError, NotFoundError, ValidationFailed

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    return str(round_money(value))


def coerce_quantity(value: Any) -> int:
    """Quantity for an add: a positive integer, 1 when missing or unusable."""
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return quantity if quantity > 0 else 1


def parse_quantity(value: Any) -> int:
    """Quantity for an update; zero and negatives are allowed and mean removal."""
    if isinstance(value, bool):
        raise ValidationFailed("Quantity must be a number", field="quantity")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationFailed("Quantity must be a whole number", field="quantity")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("Quantity must be a number", field="quantity")


def _check_size(product: Dict[str, Any], size: Any) -> None:
    if size not in product.get("sizes", []):
        raise ValidationFailed("Size not available for this product", field="size")


def _product_summary(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "price": product.get("price"),
        "imageUrl": product.get("image_url"),
    }


class Cart(ABC):
    """Operations shared by server-held and guest carts."""

    @abstractmethod
    def add_item(self, product_id: str, size: str, quantity: Any = None) -> str:
        """Add a line or grow the matching (product, size) line; returns the line id."""

    @abstractmethod
    def update_item_quantity(self, item_id: str, quantity: Any) -> None:
        pass

    @abstractmethod
    def remove_item(self, item_id: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def view(self) -> Dict[str, Any]:
        """``{"items": [...], "total": "0.00"}`` with product fields resolved."""

    def total(self) -> Decimal:
        return Decimal(self.view()["total"])


class ServerBackedCart(Cart):
    """The cart document of one signed-in user.

    Every write is conditional on the ``version`` that was read, so a
    concurrent writer cannot be silently overwritten; the losing side reloads
    and re-applies its change.
    """

    def __init__(self, db: Database, user_id: str, retries: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.retries = retries if retries is not None else config.CART_WRITE_RETRIES

    @property
    def collection(self):
        return self.db["cart"]

    def load(self) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"user_id": self.user_id})

    def _save(self, doc: Dict[str, Any], items: List[Dict[str, Any]]) -> bool:
        timestamp = utcnow()
        if "_id" not in doc:
            try:
                self.collection.insert_one({
                    "user_id": self.user_id,
                    "items": items,
                    "version": 1,
                    "created_at": timestamp,
                    "updated_at": timestamp,
                })
            except DuplicateKeyError:
                return False
            return True

        version = doc.get("version")
        version_filter = {"$exists": False} if version is None else version
        result = self.collection.update_one(
            {"_id": doc["_id"], "version": version_filter},
            {"$set": {"items": items, "updated_at": timestamp}, "$inc": {"version": 1}},
        )
        return result.matched_count == 1

    def _mutate(self, change: Callable[[List[Dict[str, Any]]], Any], create: bool = False) -> Any:
        attempts = max(self.retries, 1)
        for attempt in range(1, attempts + 1):
            doc = self.load()
            if doc is None:
                if not create:
                    raise NotFoundError("Cart")
                doc = {}
            items = copy.deepcopy(doc.get("items", []))
            result = change(items)
            if self._save(doc, items):
                return result
            logger.warning("cart_write_conflict", user_id=self.user_id, attempt=attempt)
        raise CartConflictError(self.user_id, attempts)

    @staticmethod
    def _find_line(items: List[Dict[str, Any]], item_id: str) -> Dict[str, Any]:
        for item in items:
            if str(item["_id"]) == str(item_id):
                return item
        raise NotFoundError("Item", item_id)

    def add_item(self, product_id: str, size: str, quantity: Any = None) -> str:
        product = get_product(self.db, product_id)
        _check_size(product, size)
        quantity = coerce_quantity(quantity)
        pid = str(product["_id"])

        def change(items):
            for item in items:
                if item["product_id"] == pid and item["size"] == size:
                    item["quantity"] += quantity
                    return str(item["_id"])
            line_id = ObjectId()
            items.append({"_id": line_id, "product_id": pid, "size": size, "quantity": quantity})
            return str(line_id)

        item_id = self._mutate(change, create=True)
        logger.info("cart_item_added", user_id=self.user_id, product_id=pid, size=size, quantity=quantity)
        return item_id

    def update_item_quantity(self, item_id: str, quantity: Any) -> None:
        quantity = parse_quantity(quantity)
        if quantity <= 0:
            self.remove_item(item_id)
            return

        def change(items):
            self._find_line(items, item_id)["quantity"] = quantity

        self._mutate(change)
        logger.info("cart_item_updated", user_id=self.user_id, item_id=item_id, quantity=quantity)

    def remove_item(self, item_id: str) -> None:
        def change(items):
            items.remove(self._find_line(items, item_id))

        self._mutate(change)
        logger.info("cart_item_removed", user_id=self.user_id, item_id=item_id)

    def clear(self, version: Optional[int] = None) -> bool:
        """Delete the cart; with a version, only if nobody has written to it since that read."""
        filt: Dict[str, Any] = {"user_id": self.user_id}
        if version is not None:
            filt["version"] = version
        deleted = self.collection.delete_one(filt).deleted_count > 0
        logger.info("cart_cleared", user_id=self.user_id, deleted=deleted)
        return deleted

    def remove_checked_out(self, lines: List[Dict[str, Any]]) -> None:
        """Take checked-out quantities off the cart, keeping anything added since."""
        ordered = {str(line["_id"]): line["quantity"] for line in lines}

        def change(items):
            for item in list(items):
                left = item["quantity"] - ordered.get(str(item["_id"]), 0)
                if left > 0:
                    item["quantity"] = left
                else:
                    items.remove(item)

        try:
            self._mutate(change)
        except NotFoundError:
            return
        logger.info("cart_checked_out_lines_removed", user_id=self.user_id, lines=len(ordered))

    def view(self) -> Dict[str, Any]:
        doc = self.load()
        if not doc or not doc.get("items"):
            return {"items": [], "total": format_money(Decimal(0))}

        ids = [oid for oid in (to_object_id(i["product_id"]) for i in doc["items"]) if oid]
        products = {
            str(p["_id"]): p
            for p in self.db["product"].find({"_id": {"$in": ids}}, {"name": 1, "price": 1, "image_url": 1})
        }

        total = Decimal(0)
        lines = []
        for item in doc["items"]:
            product = products.get(item["product_id"])
            if product is not None:
                total += to_money(product["price"]) * item["quantity"]
            lines.append({
                "id": str(item["_id"]),
                "product": _product_summary(product) if product else None,
                "size": item["size"],
                "quantity": item["quantity"],
            })
        return {"items": lines, "total": format_money(total)}


class LocalCart(Cart):
    """A guest cart kept in memory by the caller.

    Product existence and size are checked when a line is added; the product
    summary captured then is what prices the cart afterwards.
    """

    def __init__(self, db: Database, items: Optional[List[Dict[str, Any]]] = None):
        self.db = db
        self.items: List[Dict[str, Any]] = items or []

    @classmethod
    def from_items(cls, db: Database, items: List[Dict[str, Any]]) -> "LocalCart":
        """Restore a client-held cart as-is, without re-checking the catalog."""
        restored = []
        for raw in items:
            product = raw.get("product") or {"id": raw.get("productId")}
            restored.append({
                "id": raw.get("id") or f"guest_{uuid4().hex[:12]}",
                "product": dict(product),
                "size": raw.get("size"),
                "quantity": coerce_quantity(raw.get("quantity")),
            })
        return cls(db, restored)

    def to_items(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.items)

    def _find_line(self, item_id: str) -> Dict[str, Any]:
        for item in self.items:
            if item["id"] == item_id:
                return item
        raise NotFoundError("Item", item_id)

    def add_item(self, product_id: str, size: str, quantity: Any = None) -> str:
        product = get_product(self.db, product_id)
        _check_size(product, size)
        quantity = coerce_quantity(quantity)
        pid = str(product["_id"])

        for item in self.items:
            if item["product"]["id"] == pid and item["size"] == size:
                item["quantity"] += quantity
                return item["id"]
        line_id = f"guest_{uuid4().hex[:12]}"
        self.items.append({"id": line_id, "product": _product_summary(product), "size": size, "quantity": quantity})
        return line_id

    def update_item_quantity(self, item_id: str, quantity: Any) -> None:
        quantity = parse_quantity(quantity)
        if quantity <= 0:
            self.remove_item(item_id)
            return
        self._find_line(item_id)["quantity"] = quantity

    def remove_item(self, item_id: str) -> None:
        self.items.remove(self._find_line(item_id))

    def clear(self) -> None:
        self.items = []

    def view(self) -> Dict[str, Any]:
        total = sum(
            (to_money(item["product"].get("price") or 0) * item["quantity"] for item in self.items),
            Decimal(0),
        )
        return {"items": self.to_items(), "total": format_money(total)}


def open_cart(db: Database, user: Optional[Dict[str, Any]] = None,
              guest_items: Optional[List[Dict[str, Any]]] = None) -> Cart:
    """Pick the cart variant for a session: server-held when signed in, local otherwise."""
    if user is not None:
        return ServerBackedCart(db, str(user["_id"]))
    return LocalCart.from_items(db, guest_items or [])


def merge_guest_cart(guest: LocalCart, target: ServerBackedCart) -> Dict[str, Any]:
    """Replay every guest line into the signed-in cart, in order, then empty the guest cart.

    Lines the catalog now rejects (product deleted, size withdrawn) are skipped
    and reported instead of aborting the merge.
    """
    merged = 0
    skipped = []
    for item in guest.to_items():
        product_id = item["product"].get("id")
        try:
            target.add_item(product_id, item["size"], item["quantity"])
        except (NotFoundError, ValidationFailed) as e:
            skipped.append({"productId": product_id, "size": item["size"], "message": str(e)})
            continue
        merged += 1
    guest.clear()
    logger.info("guest_cart_merged", user_id=target.user_id, merged=merged, skipped=len(skipped))
    return {"merged": merged, "skipped": skipped}
