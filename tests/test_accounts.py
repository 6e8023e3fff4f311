import random

import pytest
from pydantic import ValidationError as SchemaError

import accounts
import database
from errors import Conflict, InsufficientStock, NotFound, ValidationError
from schemas import Address, AdminUserUpdate, ProfileUpdate


def _address(label="Home", is_default=None):
    return Address(
        label=label, name="Asha Kumar", street="12 Gandhi Road", city="Sivakasi",
        state="Tamil Nadu", pincode="626123", phone="9876543210", is_default=is_default,
    )


def _defaults(user_id):
    return [a["label"] for a in accounts.list_addresses(user_id) if a["is_default"]]


# ----------------------- Addresses -----------------------
def test_first_address_becomes_default(customer):
    added = accounts.add_address(customer["id"], _address("Home"))
    assert added["is_default"] is True
    assert added["id"]
    accounts.add_address(customer["id"], _address("Office"))
    assert _defaults(customer["id"]) == ["Home"]


def test_new_default_clears_others(customer):
    accounts.add_address(customer["id"], _address("Home"))
    accounts.add_address(customer["id"], _address("Office", is_default=True))
    assert _defaults(customer["id"]) == ["Office"]


def test_unsetting_default_promotes_another(customer):
    home = accounts.add_address(customer["id"], _address("Home"))
    accounts.add_address(customer["id"], _address("Office"))
    accounts.update_address(customer["id"], home["id"], _address("Home", is_default=False))
    assert _defaults(customer["id"]) == ["Office"]


def test_cannot_unset_only_address_default(customer):
    home = accounts.add_address(customer["id"], _address("Home"))
    with pytest.raises(ValidationError):
        accounts.update_address(customer["id"], home["id"], _address("Home", is_default=False))
    assert _defaults(customer["id"]) == ["Home"]


def test_update_changes_fields(customer):
    home = accounts.add_address(customer["id"], _address("Home"))
    updated = accounts.update_address(customer["id"], home["id"], _address("Parents"))
    assert updated["label"] == "Parents"
    assert updated["is_default"] is True


def test_deleting_default_promotes_first_remaining(customer):
    home = accounts.add_address(customer["id"], _address("Home"))
    accounts.add_address(customer["id"], _address("Office"))
    accounts.add_address(customer["id"], _address("Shop"))
    accounts.delete_address(customer["id"], home["id"])
    assert _defaults(customer["id"]) == ["Office"]


def test_set_default(customer):
    accounts.add_address(customer["id"], _address("Home"))
    shop = accounts.add_address(customer["id"], _address("Shop"))
    addresses = accounts.set_default_address(customer["id"], shop["id"])
    assert [a["label"] for a in addresses if a["is_default"]] == ["Shop"]


def test_unknown_address(customer):
    with pytest.raises(NotFound):
        accounts.set_default_address(customer["id"], "missing")


def test_single_default_survives_random_edits(customer):
    rng = random.Random(7)
    user_id = customer["id"]
    for step in range(60):
        addresses = accounts.list_addresses(user_id)
        action = rng.choice(["add", "add", "update", "delete", "default"])
        if action == "add" or not addresses:
            accounts.add_address(user_id, _address(f"A{step}", is_default=rng.choice([None, True, False])))
        elif action == "update":
            target = rng.choice(addresses)
            try:
                accounts.update_address(user_id, target["id"], _address(target["label"], rng.choice([None, True, False])))
            except ValidationError:
                assert len(addresses) == 1
        elif action == "delete":
            accounts.delete_address(user_id, rng.choice(addresses)["id"])
        else:
            accounts.set_default_address(user_id, rng.choice(addresses)["id"])
        addresses = accounts.list_addresses(user_id)
        if addresses:
            assert sum(1 for a in addresses if a["is_default"]) == 1


def test_address_format_validation():
    with pytest.raises(SchemaError):
        Address(label="Home", name="A", street="S", city="C", state="T", pincode="012345", phone="9876543210")
    with pytest.raises(SchemaError):
        Address(label="Home", name="A", street="S", city="C", state="T", pincode="626123", phone="12")


# ----------------------- Cart -----------------------
def test_cart_add_merges_quantities(customer, make_product):
    rocket = make_product(stock=5)
    accounts.add_to_cart(customer["id"], rocket, 2)
    cart = accounts.add_to_cart(customer["id"], rocket, 1)
    assert len(cart) == 1
    assert cart[0]["quantity"] == 3
    assert cart[0]["product"]["id"] == rocket


def test_cart_total_quantity_limited_by_stock(customer, make_product):
    rocket = make_product(stock=5)
    accounts.add_to_cart(customer["id"], rocket, 4)
    with pytest.raises(InsufficientStock):
        accounts.add_to_cart(customer["id"], rocket, 2)


def test_cart_update_and_remove(customer, make_product):
    rocket = make_product(stock=5)
    fountain = make_product("Fountain", stock=5)
    accounts.add_to_cart(customer["id"], rocket, 1)
    accounts.add_to_cart(customer["id"], fountain, 1)
    cart = accounts.update_cart_item(customer["id"], rocket, 4)
    assert {i["product"]["id"]: i["quantity"] for i in cart} == {rocket: 4, fountain: 1}
    cart = accounts.update_cart_item(customer["id"], rocket, 0)
    assert [i["product"]["id"] for i in cart] == [fountain]
    with pytest.raises(NotFound):
        accounts.remove_from_cart(customer["id"], rocket)
    assert accounts.clear_cart(customer["id"]) == []
    assert accounts.get_cart(customer["id"]) == []


def test_cart_drops_deleted_products(customer, make_product):
    rocket = make_product(stock=5)
    accounts.add_to_cart(customer["id"], rocket, 1)
    database.delete_document("product", rocket)
    assert accounts.get_cart(customer["id"]) == []


def test_cart_unknown_product(customer):
    with pytest.raises(NotFound):
        accounts.add_to_cart(customer["id"], "64b7f0c2a1b2c3d4e5f60718", 1)


# ----------------------- Wishlist -----------------------
def test_wishlist_has_no_duplicates(customer, make_product):
    rocket = make_product()
    accounts.add_to_wishlist(customer["id"], rocket)
    wishlist = accounts.add_to_wishlist(customer["id"], rocket)
    assert [p["id"] for p in wishlist] == [rocket]
    assert accounts.remove_from_wishlist(customer["id"], rocket) == []


def test_wishlist_requires_existing_product(customer):
    with pytest.raises(NotFound):
        accounts.add_to_wishlist(customer["id"], "64b7f0c2a1b2c3d4e5f60718")
    with pytest.raises(ValidationError):
        accounts.add_to_wishlist(customer["id"], "bogus")


# ----------------------- Profile -----------------------
def test_profile_never_exposes_credentials(customer):
    profile = accounts.get_profile(customer["id"])
    assert profile["email"] == "asha@example.com"
    assert "password_hash" not in profile
    assert "reset_password_token" not in profile


def test_profile_partial_update(customer):
    profile = accounts.update_profile(customer["id"], ProfileUpdate(phone="9000000001"))
    assert profile["phone"] == "9000000001"
    assert profile["first_name"] == "Test"


def test_profile_email_must_be_unique(customer, other_customer):
    with pytest.raises(Conflict):
        accounts.update_profile(customer["id"], ProfileUpdate(email="RAVI@example.com"))


def test_admin_cannot_delete_admin(admin):
    with pytest.raises(ValidationError):
        accounts.delete_user(admin["id"])


def test_admin_updates_role(customer):
    assert accounts.update_user(customer["id"], AdminUserUpdate(role="admin"))["role"] == "admin"
