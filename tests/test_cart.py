"""Tests for the server-held cart."""

from decimal import Decimal

import pytest

from cart import ServerBackedCart, coerce_quantity, format_money, parse_quantity
from errors import CartConflictError, NotFoundError, ValidationFailed
from schemas import Cart


@pytest.fixture
def cart(db, user):
    return ServerBackedCart(db, str(user["_id"]))


def _stored_items(db, user):
    doc = db["cart"].find_one({"user_id": str(user["_id"])})
    return doc["items"] if doc else None


class TestQuantityParsing:
    @pytest.mark.parametrize("raw,expected", [(None, 1), ("abc", 1), (0, 1), (-4, 1), ("3", 3), (2, 2)])
    def test_add_quantity_is_coerced_to_positive_int(self, raw, expected):
        assert coerce_quantity(raw) == expected

    def test_update_quantity_accepts_zero_and_negatives(self):
        assert parse_quantity("0") == 0
        assert parse_quantity(-1) == -1

    @pytest.mark.parametrize("raw", [None, "two", True])
    def test_update_quantity_rejects_non_numbers(self, raw):
        with pytest.raises(ValidationFailed):
            parse_quantity(raw)

    @pytest.mark.parametrize("raw", [0.5, 1.5, -0.25, "1.5", float("nan")])
    def test_update_quantity_rejects_fractions(self, raw):
        with pytest.raises(ValidationFailed):
            parse_quantity(raw)

    def test_update_quantity_accepts_whole_floats(self):
        assert parse_quantity(3.0) == 3

    def test_money_rounds_half_up(self):
        assert format_money(Decimal("0.125")) == "0.13"


class TestAddItem:
    def test_first_add_creates_cart(self, db, user, cart, products):
        cart.add_item(products["tee"], "M", 1)

        items = _stored_items(db, user)
        assert len(items) == 1
        assert items[0]["product_id"] == products["tee"]
        assert items[0]["size"] == "M"
        assert items[0]["quantity"] == 1

    def test_same_product_and_size_merges(self, db, user, cart, products):
        first = cart.add_item(products["tee"], "M", 1)
        second = cart.add_item(products["tee"], "M", 1)

        items = _stored_items(db, user)
        assert first == second
        assert len(items) == 1
        assert items[0]["quantity"] == 2

    def test_same_product_other_size_is_separate_line(self, db, user, cart, products):
        cart.add_item(products["tee"], "M", 1)
        cart.add_item(products["tee"], "L", 1)

        assert [i["size"] for i in _stored_items(db, user)] == ["M", "L"]

    def test_lines_keep_insertion_order(self, db, user, cart, products):
        cart.add_item(products["jeans"], "L", 1)
        cart.add_item(products["tee"], "S", 1)
        cart.add_item(products["jeans"], "L", 2)

        items = _stored_items(db, user)
        assert [i["product_id"] for i in items] == [products["jeans"], products["tee"]]
        assert items[0]["quantity"] == 3

    @pytest.mark.parametrize("quantity", [1, 5, 0, -2, "abc"])
    def test_unavailable_size_is_rejected(self, db, user, cart, products, quantity):
        with pytest.raises(ValidationFailed):
            cart.add_item(products["jeans"], "XL", quantity)
        assert _stored_items(db, user) is None

    def test_unknown_product(self, cart):
        with pytest.raises(NotFoundError):
            cart.add_item("64b7f0000000000000000000", "M", 1)

    def test_malformed_product_id(self, cart):
        with pytest.raises(NotFoundError):
            cart.add_item("not-an-id", "M", 1)

    def test_missing_quantity_defaults_to_one(self, db, user, cart, products):
        cart.add_item(products["tee"], "S")
        assert _stored_items(db, user)[0]["quantity"] == 1

    def test_version_increases_on_every_write(self, db, user, cart, products):
        cart.add_item(products["tee"], "S", 1)
        cart.add_item(products["tee"], "S", 1)
        assert cart.load()["version"] == 2

    def test_first_write_stores_the_model_default_version(self, cart, products):
        cart.add_item(products["tee"], "S", 1)
        assert cart.load()["version"] == Cart.model_fields["version"].default


class TestUpdateAndRemove:
    def test_update_sets_quantity(self, db, user, cart, products):
        item_id = cart.add_item(products["tee"], "M", 1)
        cart.update_item_quantity(item_id, 7)
        assert _stored_items(db, user)[0]["quantity"] == 7

    def test_update_has_no_stock_ceiling(self, db, user, cart, products):
        item_id = cart.add_item(products["tee"], "M", 1)
        cart.update_item_quantity(item_id, 500)
        assert _stored_items(db, user)[0]["quantity"] == 500

    def test_fractional_update_keeps_the_line(self, db, user, cart, products):
        item_id = cart.add_item(products["tee"], "M", 3)
        with pytest.raises(ValidationFailed):
            cart.update_item_quantity(item_id, 0.5)
        assert _stored_items(db, user)[0]["quantity"] == 3

    def test_update_to_zero_matches_remove(self, db, user, other_user, products):
        updated = ServerBackedCart(db, str(user["_id"]))
        removed = ServerBackedCart(db, str(other_user["_id"]))
        for c in (updated, removed):
            c.add_item(products["tee"], "M", 2)
            c.add_item(products["jeans"], "L", 1)

        updated.update_item_quantity(str(updated.load()["items"][0]["_id"]), 0)
        removed.remove_item(str(removed.load()["items"][0]["_id"]))

        def shape(c):
            return [(i["product_id"], i["size"], i["quantity"]) for i in c.load()["items"]]

        assert shape(updated) == shape(removed) == [(products["jeans"], "L", 1)]

    def test_negative_update_removes(self, db, user, cart, products):
        item_id = cart.add_item(products["tee"], "M", 3)
        cart.update_item_quantity(item_id, -1)
        assert _stored_items(db, user) == []

    def test_update_non_numeric(self, cart, products):
        item_id = cart.add_item(products["tee"], "M", 1)
        with pytest.raises(ValidationFailed):
            cart.update_item_quantity(item_id, "lots")

    def test_update_without_cart(self, cart):
        with pytest.raises(NotFoundError):
            cart.update_item_quantity("64b7f0000000000000000000", 2)

    def test_update_unknown_item(self, cart, products):
        cart.add_item(products["tee"], "M", 1)
        with pytest.raises(NotFoundError):
            cart.update_item_quantity("64b7f0000000000000000000", 2)

    def test_remove_without_cart(self, cart):
        with pytest.raises(NotFoundError):
            cart.remove_item("64b7f0000000000000000000")

    def test_remove_unknown_item(self, cart, products):
        cart.add_item(products["tee"], "M", 1)
        with pytest.raises(NotFoundError):
            cart.remove_item("whatever")

    def test_clear_deletes_cart_and_is_idempotent(self, db, user, cart, products):
        cart.add_item(products["tee"], "M", 1)
        cart.clear()
        cart.clear()
        assert db["cart"].count_documents({}) == 0

    def test_clear_with_stale_version_keeps_cart(self, db, user, cart, products):
        cart.add_item(products["tee"], "M", 1)
        version = cart.load()["version"]
        cart.add_item(products["jeans"], "L", 1)

        assert cart.clear(version=version) is False
        assert len(_stored_items(db, user)) == 2
        assert cart.clear(version=version + 1) is True

    def test_remove_checked_out_keeps_later_additions(self, db, user, cart, products):
        cart.add_item(products["tee"], "M", 2)
        priced = cart.load()["items"]
        cart.add_item(products["tee"], "M", 1)
        cart.add_item(products["jeans"], "L", 1)

        cart.remove_checked_out(priced)

        assert [(i["product_id"], i["quantity"]) for i in _stored_items(db, user)] == [
            (products["tee"], 1),
            (products["jeans"], 1),
        ]


class TestView:
    def test_no_cart_is_empty_not_missing(self, cart):
        assert cart.view() == {"items": [], "total": "0.00"}
        assert cart.total() == Decimal("0")

    def test_total_uses_live_prices(self, db, cart, products):
        cart.add_item(products["tee"], "M", 2)
        cart.add_item(products["jeans"], "L", 1)

        view = cart.view()
        assert view["total"] == "99.97"
        assert view["items"][0]["product"]["name"] == "Classic Tee"
        assert view["items"][0]["product"]["price"] == 19.99
        assert view["items"][1]["quantity"] == 1

    def test_deleted_product_is_listed_without_price(self, db, cart, products):
        from bson import ObjectId

        cart.add_item(products["tee"], "M", 1)
        cart.add_item(products["jeans"], "M", 1)
        db["product"].delete_one({"_id": ObjectId(products["jeans"])})

        view = cart.view()
        assert len(view["items"]) == 2
        assert view["items"][1]["product"] is None
        assert view["total"] == "19.99"


class TestConcurrentWrites:
    def test_lost_race_is_reapplied(self, db, user, products):
        user_id = str(user["_id"])
        rival = ServerBackedCart(db, user_id)

        class RacingCart(ServerBackedCart):
            raced = False

            def load(self):
                doc = super().load()
                if not self.raced:
                    self.raced = True
                    rival.add_item(products["jeans"], "L", 1)
                return doc

        ServerBackedCart(db, user_id).add_item(products["tee"], "S", 1)
        RacingCart(db, user_id).add_item(products["tee"], "S", 1)

        items = rival.load()["items"]
        assert [(i["size"], i["quantity"]) for i in items] == [("S", 2), ("L", 1)]

    def test_gives_up_after_retries(self, db, user, products):
        class AlwaysLosing(ServerBackedCart):
            def _save(self, doc, items):
                return False

        with pytest.raises(CartConflictError):
            AlwaysLosing(db, str(user["_id"]), retries=2).add_item(products["tee"], "S", 1)
