"""Tests for guest carts and merging them into a signed-in cart."""

import pytest
from bson import ObjectId

from cart import LocalCart, ServerBackedCart, merge_guest_cart, open_cart
from errors import NotFoundError, ValidationFailed


class TestLocalCart:
    def test_merges_same_product_and_size(self, db, products):
        guest = LocalCart(db)
        first = guest.add_item(products["tee"], "M", 1)
        second = guest.add_item(products["tee"], "M", 2)

        assert first == second
        assert first.startswith("guest_")
        assert len(guest.items) == 1
        assert guest.items[0]["quantity"] == 3

    def test_validates_at_add_time(self, db, products):
        guest = LocalCart(db)
        with pytest.raises(ValidationFailed):
            guest.add_item(products["jeans"], "S", 1)
        with pytest.raises(NotFoundError):
            guest.add_item(str(ObjectId()), "S", 1)
        assert guest.items == []

    def test_total_uses_price_captured_at_add(self, db, products):
        guest = LocalCart(db)
        guest.add_item(products["tee"], "M", 2)
        guest.add_item(products["jeans"], "L", 1)
        db["product"].update_one({"_id": ObjectId(products["tee"])}, {"$set": {"price": 1.0}})

        assert guest.view()["total"] == "99.97"

    def test_update_and_remove(self, db, products):
        guest = LocalCart(db)
        tee = guest.add_item(products["tee"], "M", 1)
        jeans = guest.add_item(products["jeans"], "L", 1)

        guest.update_item_quantity(tee, 4)
        guest.update_item_quantity(jeans, 0)

        assert [(i["id"], i["quantity"]) for i in guest.items] == [(tee, 4)]
        with pytest.raises(NotFoundError):
            guest.remove_item(jeans)

    def test_restore_does_not_revalidate(self, db):
        stale = [{
            "id": "guest_abc",
            "product": {"id": str(ObjectId()), "name": "Gone", "price": 10.0, "imageUrl": None},
            "size": "M",
            "quantity": 2,
        }]
        guest = LocalCart.from_items(db, stale)

        assert guest.view()["total"] == "20.00"
        assert guest.to_items() == stale

    def test_clear(self, db, products):
        guest = LocalCart(db)
        guest.add_item(products["tee"], "M", 1)
        guest.clear()
        assert guest.view() == {"items": [], "total": "0.00"}


class TestOpenCart:
    def test_signed_in_session_gets_server_cart(self, db, user):
        cart = open_cart(db, user)
        assert isinstance(cart, ServerBackedCart)
        assert cart.user_id == str(user["_id"])

    def test_guest_session_gets_local_cart(self, db):
        cart = open_cart(db, None, [{"productId": "p1", "size": "S", "quantity": 2}])
        assert isinstance(cart, LocalCart)
        assert cart.items[0]["product"] == {"id": "p1"}


class TestMergeGuestCart:
    def test_replays_each_line_in_order(self, db, user, products):
        guest = LocalCart(db)
        guest.add_item(products["jeans"], "L", 2)
        guest.add_item(products["tee"], "S", 1)
        server = ServerBackedCart(db, str(user["_id"]))
        server.add_item(products["tee"], "S", 3)

        result = merge_guest_cart(guest, server)

        assert result == {"merged": 2, "skipped": []}
        items = server.load()["items"]
        assert [(i["product_id"], i["size"], i["quantity"]) for i in items] == [
            (products["tee"], "S", 4),
            (products["jeans"], "L", 2),
        ]
        assert guest.items == []

    def test_rejected_lines_are_skipped(self, db, user, products):
        missing = str(ObjectId())
        guest = LocalCart.from_items(db, [
            {"productId": missing, "size": "M", "quantity": 1},
            {"productId": products["jeans"], "size": "XL", "quantity": 1},
            {"productId": products["tee"], "size": "M", "quantity": 2},
        ])
        server = ServerBackedCart(db, str(user["_id"]))

        result = merge_guest_cart(guest, server)

        assert result["merged"] == 1
        assert [s["productId"] for s in result["skipped"]] == [missing, products["jeans"]]
        assert server.view()["total"] == "39.98"
