"""
Orders: persisted snapshots of a cart at checkout, plus the status lifecycle
administrators drive afterwards.
"""
import secrets
from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import to_object_id, utcnow
from errors import NotFoundError, StorefrontError, ValidationFailed
from schemas import ORDER_TRANSITIONS, OrderStatus

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def generate_order_number() -> str:
    """``ORD-YYYYMMDD-XXXXXXXX``; the random suffix carries the uniqueness."""
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


def insert_order(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    """Insert with a fresh order number, drawing a new one on a unique-index collision."""
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = dict(doc, order_number=generate_order_number())
        try:
            candidate["_id"] = db["order"].insert_one(candidate).inserted_id
        except DuplicateKeyError:
            logger.warning("order_number_collision", order_number=candidate["order_number"])
            continue
        return candidate
    raise StorefrontError("Could not allocate a unique order number")


def serialize_order(o: Dict[str, Any]) -> Dict[str, Any]:
    address = o.get("shipping_address") or {}
    return {
        "id": str(o["_id"]),
        "orderNumber": o.get("order_number"),
        "userId": o.get("user_id"),
        "items": [
            {
                "productId": it.get("product_id"),
                "name": it.get("name"),
                "price": it.get("price"),
                "imageUrl": it.get("image_url"),
                "size": it.get("size"),
                "quantity": it.get("quantity"),
            }
            for it in o.get("items", [])
        ],
        "totalAmount": o.get("total_amount"),
        "shippingAddress": {
            "street": address.get("street"),
            "city": address.get("city"),
            "state": address.get("state"),
            "zipCode": address.get("zip_code"),
            "country": address.get("country"),
        },
        "status": o.get("status"),
        "createdAt": o.get("created_at"),
        "updatedAt": o.get("updated_at"),
    }


def order_summary(o: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(o["_id"]),
        "orderNumber": o["order_number"],
        "totalAmount": o["total_amount"],
        "status": o["status"],
        "createdAt": o["created_at"],
    }


def list_user_orders(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return list(db["order"].find({"user_id": user_id}).sort(NEWEST_FIRST))


def get_user_order(db: Database, user_id: str, order_id: str) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not order:
        raise NotFoundError("Order", order_id)
    return order


# Admin

def get_order(db: Database, order_id: str) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order", order_id)
    return order


def list_orders(db: Database, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    page = max(page, 1)
    limit = max(limit, 1)
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    return {"items": [serialize_order(o) for o in cursor], "page": page, "limit": limit, "total": total}


def update_order_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    try:
        target = OrderStatus(status)
    except ValueError:
        raise ValidationFailed(f"Unknown order status: {status}", field="status")

    order = get_order(db, order_id)
    current = OrderStatus(order["status"])
    if target not in ORDER_TRANSITIONS[current]:
        raise ValidationFailed(f"Cannot move order from {current.value} to {target.value}", field="status")

    # Conditional on the status read, so two admins cannot both apply a move from the same state.
    result = db["order"].update_one(
        {"_id": order["_id"], "status": current.value},
        {"$set": {"status": target.value, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise ValidationFailed("Order status changed concurrently, reload and retry", field="status")
    logger.info("order_status_changed", order_number=order["order_number"], previous=current.value, status=target.value)
    return db["order"].find_one({"_id": order["_id"]})


def order_stats(db: Database) -> Dict[str, Any]:
    revenue = list(db["order"].aggregate([
        {"$match": {"status": {"$ne": OrderStatus.CANCELLED.value}}},
        {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
    ]))
    by_status = {s.value: 0 for s in OrderStatus}
    for row in db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
        by_status[row["_id"]] = row["count"]
    recent = db["order"].find().sort(NEWEST_FIRST).limit(5)
    return {
        "totalOrders": db["order"].count_documents({}),
        "totalRevenue": round(revenue[0]["total"], 2) if revenue else 0,
        "statusCounts": by_status,
        "recentOrders": [order_summary(o) for o in recent],
    }
