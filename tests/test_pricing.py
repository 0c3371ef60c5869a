import pytest

from topupstore.pricing import (
    DEFAULT_MARKUP, MARKUPS, find_denomination, group_denominations,
    markup_for, selling_price,
)


@pytest.mark.parametrize("category", sorted(MARKUPS))
@pytest.mark.parametrize("base", [1, 49, 50, 999, 1000, 10000, 123457])
def test_selling_price_is_rounded_up_multiple_of_50(category, base):
    price = selling_price(base, category)
    assert price % 50 == 0
    assert price >= base
    assert price >= base * MARKUPS[category] - 1e-6


def test_games_markup():
    assert selling_price(1000, "Games") == 1100
    assert selling_price(10000, "Games") == 10700


def test_unknown_category_uses_default_markup():
    assert markup_for("Unknown Category") == DEFAULT_MARKUP
    assert selling_price(10, "Unknown Category") == 50
    assert selling_price(1, "Unknown Category") == 50


def test_markup_falls_back_to_first_word():
    assert markup_for("Games Voucher") == MARKUPS["Games"]
    assert markup_for("Pulsa Transfer") == MARKUPS["Pulsa"]
    # exact match wins over the first word
    assert markup_for("Paket Data") == 1.05
    assert markup_for("") == DEFAULT_MARKUP


def test_find_denomination_is_exact():
    entries = [{"product_name": "X 100 Diamonds"}]
    assert find_denomination(entries, "X 100 Diamonds") is entries[0]
    assert find_denomination(entries, "x 100 diamonds") is None
    assert find_denomination([], "X 100 Diamonds") is None


def test_group_denominations_orders_known_groups_first():
    entries = [
        {"product_name": "Voucher 10", "category": "Voucher", "price": 100},
        {"product_name": "ML 86 Diamonds", "category": "Games", "price": 100},
        {"product_name": "Twilight Pass", "category": "Games", "price": 100},
        {"product_name": "Weekly Membership", "category": "Games",
         "price": 100},
        {"product_name": "Starlight Member", "category": "Games",
         "price": 100},
    ]
    groups, names = group_denominations(entries)
    assert names == ["Membership", "Pass", "Top Up", "Voucher"]
    # "member" is checked before "starlight"
    assert [d["product_name"] for d in groups["Membership"]] == [
        "Weekly Membership", "Starlight Member",
    ]
    assert groups["Top Up"][0]["selling_price"] == selling_price(100, "Games")
    # the input entries are not modified
    assert "selling_price" not in entries[0]
