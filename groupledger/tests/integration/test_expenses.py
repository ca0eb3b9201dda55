"""
tests/integration/test_expenses.py — Expense creation and deletion.

Endpoints covered:
  POST   /groups/:id/expenses → 201 / 400 / 403 / 422
  DELETE /expenses/:id        → 200 / 403 / 404

Key rules verified:
  - sum(shares) == total_amount, exactly (SHARE_SUM_MISMATCH)
  - even split remainder goes to the payer, else the first participant
  - a rejected expense leaves no rows behind
  - amounts are serialised as strings
"""

from __future__ import annotations

import warnings

from sqlalchemy import func, select
from sqlalchemy.exc import SAWarning

from groupledger.app.extensions import db
from groupledger.app.models.expense import Expense
from groupledger.app.models.expense_participant import ExpenseParticipant

from .conftest import auth_headers, get_balances, get_group, group_of, make_expense, register


def _row_counts(app) -> tuple[int, int]:
    with app.app_context():
        expenses = db.session.execute(select(func.count()).select_from(Expense)).scalar_one()
        shares = db.session.execute(select(func.count()).select_from(ExpenseParticipant)).scalar_one()
    return expenses, shares


def _shares(expense: dict) -> dict:
    return {p["user_id"]: p["share_amount"] for p in expense["participants"]}


def _delete(client, token, expense_id):
    return client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(token))


class TestCreateExpense:

    def test_manual_shares_are_recorded(self, client):
        users, group = group_of(client, "alice", "bob")

        resp = make_expense(client, users["alice"]["token"], group["id"], "100.00", [
            {"user_id": "uid-alice", "share_amount": "40.00"},
            {"user_id": "uid-bob", "share_amount": "60.00"},
        ])
        assert resp.status_code == 201, resp.get_json()
        data = resp.get_json()["data"]

        assert data["expense"]["total_amount"] == "100.00"
        assert data["expense"]["payer"]["id"] == "uid-alice"
        assert _shares(data["expense"]) == {"uid-alice": "40.00", "uid-bob": "60.00"}

        statuses = {p["user_id"]: p["payment_status"] for p in data["expense"]["participants"]}
        assert statuses == {"uid-alice": "paid", "uid-bob": "unpaid"}

        [credit] = data["credits"]
        assert credit["user_id"] == "uid-bob"
        assert credit["amount"] == "60.00"
        assert data["debts"] == []

    def test_share_sum_mismatch_returns_422_and_writes_nothing(self, client, app):
        users, group = group_of(client, "alice", "bob")

        resp = make_expense(client, users["alice"]["token"], group["id"], "100.00", [
            {"user_id": "uid-alice", "share_amount": "40.00"},
            {"user_id": "uid-bob", "share_amount": "59.00"},
        ])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SHARE_SUM_MISMATCH"
        assert _row_counts(app) == (0, 0)

    def test_even_split_divides_exactly(self, client):
        users, group = group_of(client, "alice", "bob", "carol")

        resp = make_expense(client, users["alice"]["token"], group["id"], "90.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"}, {"user_id": "uid-carol"},
        ])
        assert resp.status_code == 201
        shares = _shares(resp.get_json()["data"]["expense"])
        assert shares == {"uid-alice": "30.00", "uid-bob": "30.00", "uid-carol": "30.00"}

    def test_even_split_remainder_goes_to_payer(self, client):
        users, group = group_of(client, "alice", "bob", "carol")

        resp = make_expense(client, users["bob"]["token"], group["id"], "100.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"}, {"user_id": "uid-carol"},
        ])
        assert resp.status_code == 201
        shares = _shares(resp.get_json()["data"]["expense"])
        assert shares == {"uid-alice": "33.33", "uid-bob": "33.34", "uid-carol": "33.33"}

    def test_odd_cent_goes_to_first_participant_when_payer_absent(self, client):
        users, group = group_of(client, "alice", "bob", "carol")

        resp = make_expense(client, users["alice"]["token"], group["id"], "0.05", [
            {"user_id": "uid-carol"}, {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 201
        shares = _shares(resp.get_json()["data"]["expense"])
        assert shares == {"uid-carol": "0.03", "uid-bob": "0.02"}

    def test_partial_shares_return_422(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "50.00", [
            {"user_id": "uid-alice", "share_amount": "25.00"},
            {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTIAL_SHARES"

    def test_participant_outside_group_returns_422(self, client, app):
        users, group = group_of(client, "alice", "bob")
        register(client, "eve")

        resp = make_expense(client, users["alice"]["token"], group["id"], "20.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-eve"},
        ])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_MEMBER"
        assert _row_counts(app) == (0, 0)

    def test_duplicate_participant_returns_422(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "20.00", [
            {"user_id": "uid-bob"}, {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "DUPLICATE_PARTICIPANT"

    def test_empty_participants_returns_422(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "20.00", [])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "EMPTY_PARTICIPANTS"

    def test_too_many_decimal_places_returns_400(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "10.005", [
            {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "total_amount"

    def test_share_precision_error_names_nested_field(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "10.00", [
            {"user_id": "uid-bob", "share_amount": "10.001"},
        ])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "participants.0.share_amount"

    def test_amount_too_small_to_split_returns_422(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(client, users["alice"]["token"], group["id"], "0.01", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "AMOUNT_TOO_SMALL_TO_SPLIT"

    def test_non_member_payer_returns_403(self, client):
        _, group = group_of(client, "alice", "bob")
        eve = register(client, "eve")
        resp = make_expense(client, eve["token"], group["id"], "10.00", [{"user_id": "uid-alice"}])
        assert resp.status_code == 403

    def test_other_participants_are_notified(self, client, notifier):
        users, group = group_of(client, "alice", "bob", "carol")

        make_expense(client, users["alice"]["token"], group["id"], "90.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"}, {"user_id": "uid-carol"},
        ])

        assert notifier.for_user("uid-alice") == []
        [to_bob] = notifier.for_user("uid-bob")
        assert to_bob["data"]["type"] == "expense_created"
        assert "30.00" in to_bob["body"]
        assert len(notifier.for_user("uid-carol")) == 1

    def test_notification_failure_does_not_fail_the_request(self, client, notifier):
        users, group = group_of(client, "alice", "bob")
        notifier.fail = True

        resp = make_expense(client, users["alice"]["token"], group["id"], "10.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"},
        ])
        assert resp.status_code == 201

    def test_optional_fields_round_trip(self, client):
        users, group = group_of(client, "alice", "bob")
        resp = make_expense(
            client, users["alice"]["token"], group["id"], "12.50", [{"user_id": "uid-bob"}],
            title="Taxi", note="airport", bill_image_url="https://example.com/bill.png",
        )
        assert resp.status_code == 201
        expense = resp.get_json()["data"]["expense"]
        assert expense["title"] == "Taxi"
        assert expense["note"] == "airport"
        assert expense["bill_image_url"] == "https://example.com/bill.png"

    def test_snapshot_lists_expenses_oldest_first(self, client):
        users, group = group_of(client, "alice", "bob")
        token = users["alice"]["token"]
        make_expense(client, token, group["id"], "10.00", [{"user_id": "uid-bob"}], title="First")
        make_expense(client, token, group["id"], "20.00", [{"user_id": "uid-bob"}], title="Second")

        snapshot = get_group(client, token, group["id"])
        assert [e["title"] for e in snapshot["expenses"]] == ["First", "Second"]


class TestDeleteExpense:

    def _setup(self, client):
        users, group = group_of(client, "alice", "bob", "carol")
        resp = make_expense(client, users["bob"]["token"], group["id"], "30.00", [
            {"user_id": "uid-alice"}, {"user_id": "uid-bob"}, {"user_id": "uid-carol"},
        ])
        assert resp.status_code == 201
        return users, group, resp.get_json()["data"]["expense"]["id"]

    def test_payer_can_delete(self, client, app):
        users, group, expense_id = self._setup(client)

        resp = _delete(client, users["bob"]["token"], expense_id)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["group_id"] == group["id"]
        assert data["credits"] == []
        assert _row_counts(app) == (0, 0)

    def test_delete_issues_each_row_delete_once(self, client, app):
        users, _, expense_id = self._setup(client)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", SAWarning)
            resp = _delete(client, users["bob"]["token"], expense_id)

        assert resp.status_code == 200
        stale = [str(w.message) for w in caught if "expected to delete" in str(w.message)]
        assert stale == []
        assert _row_counts(app) == (0, 0)

    def test_group_creator_can_delete(self, client, app):
        users, group, expense_id = self._setup(client)

        resp = _delete(client, users["alice"]["token"], expense_id)
        assert resp.status_code == 200
        assert get_balances(client, users["alice"]["token"], group["id"])["debts"] == []
        assert _row_counts(app) == (0, 0)

    def test_other_member_gets_403_and_nothing_changes(self, client, app):
        users, group, expense_id = self._setup(client)

        resp = _delete(client, users["carol"]["token"], expense_id)
        assert resp.status_code == 403
        assert _row_counts(app) == (1, 3)

        [debt] = get_balances(client, users["carol"]["token"], group["id"])["debts"]
        assert debt["amount"] == "10.00"

    def test_missing_expense_returns_404(self, client):
        alice = register(client, "alice")
        resp = _delete(client, alice["token"], 55555)
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"
