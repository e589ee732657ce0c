from datetime import datetime, timedelta
from decimal import Decimal

from factories import JAN, consumption, expense, group, member, resource, settlement
from splitledger.models.settlement import COMPLETED, OPEN
from splitledger.services.balance_service import (
    EntityKey,
    aggregate,
    balances_by_key,
    member_key,
    resource_key,
)
from splitledger.services.cutoff import resolve_cutoff
from splitledger.services.settlement_service import plan
from splitledger.services.snapshot import GeneratedExpense, StoredExpense, build_snapshot

D = Decimal


def _snapshot(members, expenses=(), resources=(), settlements=(), g=None, **kw):
    return build_snapshot(g or group(), members, resources, expenses, settlements, **kw)


def test_equal_expense_balances():
    snap = _snapshot([member(1), member(2), member(3)], [expense(1, 1, "90")])
    balances = aggregate(snap, None)

    assert balances == {member_key(1): D("60"), member_key(2): D("-30"), member_key(3): D("-30")}
    assert balances_by_key(balances) == {"member_1": D("60"), "member_2": D("-30"), "member_3": D("-30")}


def test_every_entity_starts_at_zero():
    snap = _snapshot([member(1), member(2)], resources=[resource(7)])
    assert aggregate(snap, None) == {member_key(1): 0, member_key(2): 0, resource_key(7): 0}


def test_split_all_uses_members_active_on_the_date():
    people = [member(1), member(2), member(3, active_from=JAN + timedelta(days=10))]
    snap = _snapshot(people, [expense(1, 1, "40")])
    balances = aggregate(snap, None)

    assert balances[member_key(1)] == D("20")
    assert balances[member_key(2)] == D("-20")
    assert balances[member_key(3)] == 0


def test_explicit_shares_with_pin():
    e = expense(1, 1, "100", split_all=False, shares=[(2, "70", True), (3, "0", False)])
    snap = _snapshot([member(1), member(2), member(3)], [e])
    balances = aggregate(snap, None)

    assert balances == {member_key(1): D("100"), member_key(2): D("-70"), member_key(3): D("-30")}


def test_unit_priced_consumption_credits_the_resource():
    power = resource(5, unit_price="0.25", consumptions=[consumption(1, "200", [1, 2], is_unit_amount=True)])
    snap = _snapshot([member(1), member(2)], resources=[power])
    balances = aggregate(snap, None)

    assert balances[resource_key(5)] == D("50")
    assert balances[member_key(1)] == D("-25")
    assert balances[member_key(2)] == D("-25")


def test_currency_consumption_ignores_unit_price():
    water = resource(5, unit_price="2", consumptions=[consumption(1, "30", [1, 2, 3])])
    snap = _snapshot([member(1), member(2), member(3)], resources=[water])
    assert aggregate(snap, None)[resource_key(5)] == D("30")


def test_completed_settlement_transactions_reduce_balances():
    paid = settlement(1, JAN + timedelta(days=1), [(2, 1, "30", COMPLETED), (3, 1, "30", OPEN)])
    snap = _snapshot([member(1), member(2), member(3)], [expense(1, 1, "90")], settlements=[paid])
    balances = aggregate(snap, None)

    assert balances == {member_key(1): D("30"), member_key(2): D("0"), member_key(3): D("-30")}


def test_split_all_before_anyone_joined_falls_back_to_whole_group():
    people = [member(1, active_from=JAN + timedelta(days=10)), member(2, active_from=JAN + timedelta(days=10))]
    snap = _snapshot(people, [expense(1, 1, "40")])

    assert [s.member_id for s in snap.expenses[0].shares] == [1, 2]
    assert aggregate(snap, None) == {member_key(1): D("20"), member_key(2): D("-20")}


def test_completed_around_resource_plan_clears_the_resource():
    people = [member(1), member(2)]
    power = resource(5, unit_price="0.5", consumptions=[consumption(1, "100", [1, 2], is_unit_amount=True)])
    before = aggregate(_snapshot(people, resources=[power]), None)
    transfers = plan(before, "around_resource", 5)
    assert [(t.from_id, t.to_kind, t.to_id) for t in transfers] == [(1, "resource", 5), (2, "resource", 5)]

    paid = settlement(1, JAN + timedelta(days=3), [
        (EntityKey(t.from_kind, t.from_id), EntityKey(t.to_kind, t.to_id), t.amount, COMPLETED)
        for t in transfers
    ])
    assert paid.members[0].to_resource_id == 5
    balances = aggregate(_snapshot(people, resources=[power], settlements=[paid]), None)

    assert balances == {member_key(1): 0, member_key(2): 0, resource_key(5): 0}


def test_resource_paying_out_is_debited():
    refund = settlement(1, JAN, [(("resource", 5), 1, "10", COMPLETED)])
    snap = _snapshot([member(1)], resources=[resource(5)], settlements=[refund])
    balances = aggregate(snap, None)

    assert balances == {member_key(1): D("-10"), resource_key(5): D("10")}
    assert sum(balances.values()) == 0

def test_cutoff_hides_settled_history():
    t1 = datetime(2025, 2, 1)
    later = datetime(2025, 3, 1)
    people = [member(1), member(2)]
    settled = settlement(1, t1, [(2, 1, "50", COMPLETED)])
    expenses = [expense(1, 1, "100"), expense(2, 2, "20", date=later)]
    snap = _snapshot(people, expenses, settlements=[settled])

    cutoff = resolve_cutoff(snap.settlements)
    assert cutoff == t1
    assert aggregate(snap, cutoff) == {member_key(1): D("-10"), member_key(2): D("10")}


def test_balances_sum_to_zero():
    people = [member(1), member(2, {"rooms": 2}), member(3, {"rooms": 3})]
    g = group(True, [{"id": "rooms", "name": "Rooms"}])
    heat = resource(9, unit_price="0.3", consumptions=[consumption(1, "77", [2, 3], is_unit_amount=True)])
    expenses = [
        expense(1, 1, "100", sharing_method="rooms"),
        expense(2, 2, "33.33"),
        expense(3, 3, "10", split_all=False, shares=[(1, "4", True), (2, "0", False)]),
    ]
    paid = settlement(1, JAN + timedelta(days=2), [(2, 1, "12.34", COMPLETED)])
    snap = _snapshot(people, expenses, [heat], [paid], g=g)
    balances = aggregate(snap, None)

    assert abs(sum(balances.values())) < D("1e-20")


def test_aggregate_is_repeatable():
    snap = _snapshot([member(1), member(2), member(3)], [expense(1, 1, "10"), expense(2, 2, "7")])
    assert list(aggregate(snap, None).items()) == list(aggregate(snap, None).items())


def test_recurring_expense_uses_expander_dates():
    people = [member(1), member(2), member(3, active_from=datetime(2025, 2, 15))]
    rent = expense(1, 1, "60", is_recurring=True, recurring_type="monthly", recurring_start_date=JAN)

    def monthly(e, current_date):
        return [datetime(2025, month, 1) for month in (1, 2, 3)]

    snap = _snapshot(people, [rent], expander=monthly, current_date=datetime(2025, 3, 20))
    assert [type(i) for i in snap.expenses] == [GeneratedExpense] * 3
    assert [len(i.shares) for i in snap.expenses] == [2, 2, 3]

    balances = aggregate(snap, None)
    assert balances[member_key(1)] == D("180") - D("30") - D("30") - D("20")
    assert balances[member_key(3)] == D("-20")


def test_recurring_expense_without_expander_is_stored_once():
    rent = expense(1, 1, "60", is_recurring=True, recurring_type="monthly", recurring_start_date=JAN)
    snap = _snapshot([member(1), member(2)], [rent])
    assert [type(i) for i in snap.expenses] == [StoredExpense]


def test_entity_key_round_trip():
    assert str(EntityKey("resource", 4)) == "resource_4"
    assert EntityKey.parse("member_12") == member_key(12)
