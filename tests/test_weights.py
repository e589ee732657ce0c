from decimal import Decimal

from factories import consumption, expense, group, member
from splitledger.services.weights import default_sharing_method, is_weight_type_in_use, weight_of


def test_equal_method_gives_everyone_one():
    m = member(1, weights={"rooms": 3})
    assert weight_of(m, "equal") == 1


def test_named_weight_type():
    m = member(1, weights={"rooms": 2.5})
    assert weight_of(m, "rooms") == Decimal("2.5")


def test_missing_weight_defaults_to_one():
    assert weight_of(member(1, weights={"rooms": 2}), "heating") == 1
    assert weight_of(None, "rooms") == 1


def test_weights_disabled_for_group():
    assert weight_of(member(1, weights={"rooms": 4}), "rooms", weights_enabled=False) == 1


def test_default_sharing_method():
    assert default_sharing_method(group()) == "equal"
    one = [{"id": "rooms", "name": "Rooms"}]
    assert default_sharing_method(group(True, one)) == "rooms"
    two = [{"id": "rooms", "name": "Rooms"}, {"id": "heat", "name": "Heat", "is_default": True}]
    assert default_sharing_method(group(True, two)) == "heat"
    two[1]["is_default"] = False
    assert default_sharing_method(group(True, two)) == "equal"
    # switched off: weight types are ignored
    assert default_sharing_method(group(False, one)) == "equal"


def test_weight_type_in_use():
    expenses = [expense(1, 1, "10", sharing_method="rooms")]
    c = consumption(1, "5", [1])
    c.sharing_method = "heat"
    assert is_weight_type_in_use("rooms", expenses, [])
    assert is_weight_type_in_use("heat", [], [c])
    assert not is_weight_type_in_use("garden", expenses, [c])
