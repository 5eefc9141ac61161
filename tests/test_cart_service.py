"""Tests for the cart store."""

from decimal import Decimal

import pytest

from storefront.errors import InsufficientStock, NotFound, ProductUnavailable, ValidationError
from storefront.identity import GuestOwner
from storefront.models import Cart, CartLine, Product, attributes_key
from storefront.services.cart_service import validate_quantity


def _line_count(db):
    with db() as session:
        return session.query(CartLine).count()


def _cart_count(db, owner):
    with db() as session:
        return session.query(Cart).filter(Cart.owner_kind == owner.kind, Cart.owner_ref == owner.ref).count()


class TestAttributesKey:
    def test_key_order_is_irrelevant(self):
        assert attributes_key({"size": "M", "color": "red"}) == attributes_key({"color": "red", "size": "M"})

    def test_empty_selection_equals_none(self):
        assert attributes_key({}) == attributes_key(None) == ""

    def test_values_are_compared_as_text(self):
        assert attributes_key({"size": 42}) == attributes_key({"size": "42"})


class TestValidateQuantity:
    @pytest.mark.parametrize("value", [0, -3, "abc", None, True, 1.5])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_quantity(value)

    def test_accepts_numeric_strings(self):
        assert validate_quantity("3") == 3

    def test_non_positive_allowed_for_updates(self):
        assert validate_quantity(0, allow_non_positive=True) == 0


class TestAddLine:
    def test_first_add_creates_cart_and_line(self, carts, guest):
        result = carts.add_line(guest, "p-shirt", 2)
        assert result["status"] == "added"
        cart = result["cart"]
        assert cart["item_count"] == 2
        assert cart["subtotal"] == Decimal("20.00")
        assert cart["items"][0]["price_snapshot"] == Decimal("10.00")

    def test_repeated_add_increments_single_line(self, carts, guest, db):
        first = carts.add_line(guest, "p-shirt", 1)
        second = carts.add_line(guest, "p-shirt", 2)
        assert first["line_id"] == second["line_id"]
        assert _line_count(db) == 1
        assert second["cart"]["items"][0]["quantity"] == 3

    def test_same_attributes_in_other_order_share_a_line(self, carts, guest, db):
        carts.add_line(guest, "p-shirt", 1, {"size": "M", "color": "red"})
        carts.add_line(guest, "p-shirt", 1, {"color": "red", "size": "M"})
        assert _line_count(db) == 1

    def test_different_attributes_are_separate_lines(self, carts, guest, db):
        carts.add_line(guest, "p-shirt", 1, {"size": "M"})
        carts.add_line(guest, "p-shirt", 1, {"size": "L"})
        carts.add_line(guest, "p-shirt", 1)
        assert _line_count(db) == 3

    def test_snapshot_survives_catalog_price_change(self, carts, guest, db):
        carts.add_line(guest, "p-shirt", 1)
        with db() as session:
            session.get(Product, "p-shirt").price = Decimal("99.00")
        result = carts.add_line(guest, "p-shirt", 1)
        item = result["cart"]["items"][0]
        assert item["price_snapshot"] == Decimal("10.00")
        assert item["quantity"] == 2

    def test_sale_price_is_snapshotted(self, carts, guest):
        result = carts.add_line(guest, "p-bag", 1)
        assert result["cart"]["items"][0]["price_snapshot"] == Decimal("32.00")

    def test_stock_limit_on_first_add(self, carts, guest, db):
        with pytest.raises(InsufficientStock) as exc:
            carts.add_line(guest, "p-shirt", 6)
        assert exc.value.requested == 6
        assert exc.value.available == 5
        assert _line_count(db) == 0

    def test_stock_limit_counts_existing_quantity(self, carts, guest):
        carts.add_line(guest, "p-cap", 2)
        with pytest.raises(InsufficientStock) as exc:
            carts.add_line(guest, "p-cap", 2)
        assert exc.value.requested == 4
        assert carts.get_cart(guest)["items"][0]["quantity"] == 2

    def test_unknown_product(self, carts, guest):
        with pytest.raises(ProductUnavailable):
            carts.add_line(guest, "p-missing", 1)

    def test_non_purchasable_product(self, carts, guest):
        with pytest.raises(ProductUnavailable) as exc:
            carts.add_line(guest, "p-old", 1)
        assert exc.value.status == "archived"

    def test_attributes_must_be_mapping(self, carts, guest):
        with pytest.raises(ValidationError):
            carts.add_line(guest, "p-shirt", 1, ["size", "M"])


class TestUpdateAndRemove:
    def test_update_sets_quantity(self, carts, guest):
        line_id = carts.add_line(guest, "p-shirt", 1)["line_id"]
        result = carts.update_quantity(guest, line_id, 4)
        assert result["status"] == "updated"
        assert result["cart"]["items"][0]["quantity"] == 4

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_update_to_non_positive_deletes_line(self, carts, guest, db, quantity):
        line_id = carts.add_line(guest, "p-shirt", 1)["line_id"]
        result = carts.update_quantity(guest, line_id, quantity)
        assert result["status"] == "removed"
        assert result["cart"]["items"] == []
        assert _line_count(db) == 0

    def test_update_beyond_stock(self, carts, guest):
        line_id = carts.add_line(guest, "p-cap", 1)["line_id"]
        with pytest.raises(InsufficientStock):
            carts.update_quantity(guest, line_id, 4)

    def test_update_rechecks_product_status(self, carts, guest, db):
        line_id = carts.add_line(guest, "p-shirt", 1)["line_id"]
        with db() as session:
            session.get(Product, "p-shirt").status = "archived"
        with pytest.raises(ProductUnavailable):
            carts.update_quantity(guest, line_id, 2)

    def test_update_unknown_line(self, carts, guest):
        carts.add_line(guest, "p-shirt", 1)
        with pytest.raises(NotFound):
            carts.update_quantity(guest, "nope", 2)

    def test_cannot_touch_another_owners_line(self, carts, guest):
        line_id = carts.add_line(guest, "p-shirt", 1)["line_id"]
        other = GuestOwner("someone-else")
        carts.add_line(other, "p-cap", 1)
        with pytest.raises(NotFound):
            carts.update_quantity(other, line_id, 3)
        assert carts.remove_line(other, line_id)["status"] == "absent"
        assert carts.get_cart(guest)["items"][0]["quantity"] == 1

    def test_remove_line(self, carts, guest, db):
        line_id = carts.add_line(guest, "p-shirt", 1)["line_id"]
        assert carts.remove_line(guest, line_id)["status"] == "removed"
        assert carts.remove_line(guest, line_id)["status"] == "absent"
        assert _line_count(db) == 0

    def test_remove_without_cart(self, carts, guest):
        with pytest.raises(NotFound):
            carts.remove_line(guest, "line-1")


class TestCartLifetime:
    def test_get_cart_without_cart_is_empty(self, carts, guest):
        view = carts.get_cart(guest)
        assert view["id"] is None
        assert view["items"] == []
        assert view["subtotal"] == Decimal("0")

    def test_get_or_create_is_stable(self, carts, guest, db):
        first = carts.get_or_create_cart(guest)
        second = carts.get_or_create_cart(guest)
        assert first["id"] == second["id"]
        assert _cart_count(db, guest) == 1

    def test_expired_cart_counts_as_absent(self, carts, guest, clock):
        carts.add_line(guest, "p-shirt", 1)
        clock.advance(days=31)
        assert carts.get_cart(guest)["items"] == []

    def test_add_after_expiry_replaces_cart(self, carts, guest, clock, db):
        old_id = carts.add_line(guest, "p-shirt", 2)["cart"]["id"]
        clock.advance(days=31)
        result = carts.add_line(guest, "p-cap", 1)
        assert result["cart"]["id"] != old_id
        assert [it["product_id"] for it in result["cart"]["items"]] == ["p-cap"]
        assert _cart_count(db, guest) == 1
        assert _line_count(db) == 1

    def test_purge_expired(self, carts, guest, account, clock, db):
        carts.add_line(guest, "p-shirt", 1)
        clock.advance(days=20)
        carts.add_line(account, "p-cap", 1)
        clock.advance(days=15)
        assert carts.purge_expired() == 1
        assert _cart_count(db, guest) == 0
        assert _cart_count(db, account) == 1
        assert _line_count(db) == 1
