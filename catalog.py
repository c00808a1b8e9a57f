"""
Catalog store: product lookups used by the cart and checkout, listing with
filters for the storefront, and the admin write operations.
"""
import math
import re
from typing import Any, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import to_object_id, utcnow
from errors import NotFoundError, ValidationFailed
from schemas import CATEGORIES, SIZES, Product

logger = structlog.get_logger(__name__)

SORT_FIELDS = {"name": "name", "price": "price", "createdAt": "created_at"}


def serialize_product(p: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(p["_id"]),
        "name": p.get("name"),
        "description": p.get("description"),
        "price": p.get("price"),
        "imageUrl": p.get("image_url"),
        "category": p.get("category"),
        "sizes": p.get("sizes", []),
        "stock": p.get("stock", 0),
        "createdAt": p.get("created_at"),
        "updatedAt": p.get("updated_at"),
    }


def find_product(db: Database, product_id: Any) -> Optional[Dict[str, Any]]:
    oid = to_object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one({"_id": oid})


def get_product(db: Database, product_id: Any) -> Dict[str, Any]:
    product = find_product(db, product_id)
    if not product:
        raise NotFoundError("Product", str(product_id))
    return product


def list_products(db: Database, search: Optional[str] = None, category: Optional[str] = None,
                  size: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, sort_by: str = "createdAt", sort_order: str = "desc",
                  page: int = 1, limit: int = 10) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search.strip())
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        filt["category"] = category
    if size:
        filt["sizes"] = size
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond

    field = SORT_FIELDS.get(sort_by)
    if field is None:
        raise ValidationFailed(f"Cannot sort by {sort_by}", field="sortBy")
    direction = ASCENDING if sort_order == "asc" else DESCENDING
    page = max(page, 1)
    limit = max(limit, 1)

    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt).sort([(field, direction), ("_id", direction)])
    cursor = cursor.skip((page - 1) * limit).limit(limit)
    return {
        "items": [serialize_product(p) for p in cursor],
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


def list_categories() -> List[str]:
    return list(CATEGORIES)


def list_sizes() -> List[str]:
    return list(SIZES)


# Admin writes

def create_product(db: Database, payload: Product) -> Dict[str, Any]:
    doc = payload.model_dump()
    timestamp = utcnow()
    doc.update({"created_at": timestamp, "updated_at": timestamp})
    doc["_id"] = db["product"].insert_one(doc).inserted_id
    logger.info("product_created", product_id=str(doc["_id"]), name=doc["name"])
    return doc


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    current = get_product(db, product_id)
    merged = {k: current.get(k) for k in Product.model_fields}
    merged.update({k: v for k, v in changes.items() if v is not None})
    try:
        validated = Product.model_validate(merged)
    except ValueError as e:
        raise ValidationFailed(str(e))
    update = validated.model_dump()
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": current["_id"]}, {"$set": update})
    logger.info("product_updated", product_id=product_id, fields=sorted(changes))
    return db["product"].find_one({"_id": current["_id"]})


def delete_product(db: Database, product_id: str) -> None:
    oid = to_object_id(product_id)
    result = db["product"].delete_one({"_id": oid}) if oid else None
    if result is None or result.deleted_count == 0:
        raise NotFoundError("Product", product_id)
    logger.info("product_deleted", product_id=product_id)


def product_stats(db: Database) -> Dict[str, Any]:
    total_stock = list(db["product"].aggregate([
        {"$group": {"_id": None, "total": {"$sum": "$stock"}}},
    ]))
    category_stats = list(db["product"].aggregate([
        {"$group": {"_id": "$category", "count": {"$sum": 1}, "totalStock": {"$sum": "$stock"}}},
        {"$sort": {"_id": 1}},
    ]))
    return {
        "totalProducts": db["product"].count_documents({}),
        "totalStock": total_stock[0]["total"] if total_stock else 0,
        "categoryStats": category_stats,
    }
