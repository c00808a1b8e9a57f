"""
Sample catalog and admin account for local development.

    python seed.py            # insert sample products and the admin user if missing
"""
import os
from typing import Any, Dict, List

import structlog
from pymongo.database import Database

from auth import register_user
from database import ensure_indexes, utcnow

logger = structlog.get_logger(__name__)

ALL_SIZES = ["S", "M", "L", "XL"]

SAMPLE_PRODUCTS: List[Dict[str, Any]] = [
    {
        "name": "Classic White T-Shirt",
        "description": "Comfortable cotton t-shirt perfect for everyday wear. Soft fabric with a relaxed fit.",
        "price": 19.99,
        "image_url": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?w=400",
        "category": "Men",
        "stock": 50,
    },
    {
        "name": "Denim Jacket",
        "description": "Classic blue denim jacket with vintage wash.",
        "price": 79.99,
        "image_url": "https://images.unsplash.com/photo-1544022613-e87ca75a784a?w=400",
        "category": "Men",
        "stock": 30,
    },
    {
        "name": "Slim Fit Jeans",
        "description": "Dark wash slim fit jeans made from premium denim.",
        "price": 59.99,
        "image_url": "https://images.unsplash.com/photo-1541099649105-f69ad21f3246?w=400",
        "category": "Men",
        "stock": 40,
    },
    {
        "name": "Leather Jacket",
        "description": "Genuine leather biker jacket with a quilted lining.",
        "price": 199.99,
        "image_url": "https://images.unsplash.com/photo-1551028719-00167b16eac5?w=400",
        "category": "Men",
        "stock": 15,
    },
    {
        "name": "Floral Summer Dress",
        "description": "Light, breezy dress with a floral print.",
        "price": 39.99,
        "image_url": "https://images.unsplash.com/photo-1515372039744-b8f02a3ae446?w=400",
        "category": "Women",
        "stock": 40,
    },
    {
        "name": "High-Waisted Jeans",
        "description": "Flattering high-rise jeans with a little stretch.",
        "price": 54.99,
        "image_url": "https://images.unsplash.com/photo-1541099649105-f69ad21f3246?w=400",
        "category": "Women",
        "stock": 35,
    },
    {
        "name": "Knit Sweater",
        "description": "Chunky knit sweater for cooler days.",
        "price": 49.99,
        "image_url": "https://images.unsplash.com/photo-1556821840-3a63f95609a4?w=400",
        "category": "Women",
        "stock": 25,
    },
    {
        "name": "Kids' Graphic T-Shirt",
        "description": "Soft tee with a playful print.",
        "price": 14.99,
        "image_url": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?w=400",
        "category": "Kids",
        "stock": 50,
    },
    {
        "name": "Kids' Hoodie",
        "description": "Cozy pullover hoodie with a kangaroo pocket.",
        "price": 24.99,
        "image_url": "https://images.unsplash.com/photo-1556821840-3a63f95609a4?w=400",
        "category": "Kids",
        "stock": 40,
    },
]


def seed_products(db: Database) -> int:
    """Insert the sample catalog into an empty product collection; returns how many were added."""
    if db["product"].count_documents({}) > 0:
        return 0
    timestamp = utcnow()
    docs = [{**p, "sizes": list(ALL_SIZES), "created_at": timestamp, "updated_at": timestamp}
            for p in SAMPLE_PRODUCTS]
    db["product"].insert_many(docs)
    logger.info("products_seeded", count=len(docs))
    return len(docs)


def ensure_admin(db: Database, email: str, password: str) -> bool:
    if db["user"].find_one({"email": email.lower()}):
        return False
    register_user(db, "Admin User", email, password, role="admin")
    return True


if __name__ == "__main__":
    from database import db
    from logging_config import configure_logging

    configure_logging()
    ensure_indexes(db)
    seed_products(db)
    ensure_admin(
        db,
        os.getenv("SEED_ADMIN_EMAIL", "admin@alphaclothing.com"),
        os.getenv("SEED_ADMIN_PASSWORD", "admin123"),
    )
