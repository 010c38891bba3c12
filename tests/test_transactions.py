"""
Tests for the transaction service.

Every test checks balances as well as rows: a ledger change that leaves
Account.balance behind is a failure even when the rows look right.
"""

import pytest
from decimal import Decimal

from splitledger.services.errors import (
    ErrorKind,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)

from conftest import ALICE, BOB, CAROL, balance_of


def split(alice_account, bob_account, alice=("30", "60"), bob=("30", "0"), **header):
    """Payload for a bill Alice and Bob share."""
    payload = {
        "category": "Food",
        "description": "Dinner",
        "amounts": [
            {"account_id": alice_account.id, "amount_to_pay": alice[0], "amount_paid": alice[1]},
            {"account_id": bob_account.id, "amount_to_pay": bob[0], "amount_paid": bob[1]},
        ],
    }
    payload.update(header)
    return payload


def row_for(transaction, account_id):
    return next(a for a in transaction.amounts if a.account_id == account_id)


class TestCreateTransaction:
    """Tests for transaction creation."""

    def test_expense_decreases_balance(self, transaction_service, account_service, alice_account):
        """Test a 100 expense paid in full by the caller."""
        transaction = transaction_service.create_transaction(ALICE, {
            "category": "Groceries",
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "100", "amount_paid": "100"}],
        })
        assert transaction.is_income is False
        assert transaction.include_in_reports is True
        assert len(transaction.amounts) == 1
        assert balance_of(account_service, alice_account.id) == Decimal("-100")

    def test_income_increases_balance(self, transaction_service, account_service, alice_account):
        transaction_service.create_transaction(ALICE, {
            "category": "Salary",
            "is_income": True,
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "2500", "amount_paid": "2500"}],
        })
        assert balance_of(account_service, alice_account.id) == Decimal("2500")

    def test_split_with_friend(self, transaction_service, account_service, alice_account, bob_account):
        """Test that every registered row moves its own account by what it paid."""
        transaction = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("30", "40"), bob=("30", "20"))
        )
        assert transaction.account_ids == {alice_account.id, bob_account.id}
        assert balance_of(account_service, alice_account.id) == Decimal("-40")
        assert balance_of(account_service, bob_account.id) == Decimal("-20")

    def test_external_payee_row(self, transaction_service, account_service, alice_account):
        """Test a row for someone who is not on the platform."""
        transaction = transaction_service.create_transaction(ALICE, {
            "category": "Taxi",
            "amounts": [
                {"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "20"},
                {"account_name": "Dave", "amount_to_pay": "10", "amount_paid": "0"},
            ],
        })
        dave = next(a for a in transaction.amounts if a.account_id is None)
        assert dave.account_name == "Dave"
        assert balance_of(account_service, alice_account.id) == Decimal("-20")

    def test_tags_are_stored(self, transaction_service, alice_account, bob_account):
        transaction = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, tags=["trip", "paris"])
        )
        assert [t.tag for t in transaction.tags] == ["trip", "paris"]

    def test_unbalanced_rejected(self, transaction_service, account_service, alice_account, bob_account):
        """Test paid 90 against owed 100."""
        with pytest.raises(InvalidInputError, match="Sum of Amount Paid"):
            transaction_service.create_transaction(
                ALICE, split(alice_account, bob_account, alice=("50", "90"), bob=("50", "0"))
            )
        assert transaction_service.list_transactions(ALICE).total == 0
        assert balance_of(account_service, alice_account.id) == Decimal("0")

    def test_difference_of_exactly_tolerance_accepted(self, transaction_service, alice_account):
        transaction = transaction_service.create_transaction(ALICE, {
            "category": "Food",
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "100", "amount_paid": "100.01"}],
        })
        assert transaction.total_paid == Decimal("100.01")

    def test_difference_over_tolerance_rejected(self, transaction_service, alice_account):
        with pytest.raises(InvalidInputError):
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [{"account_id": alice_account.id, "amount_to_pay": "100", "amount_paid": "100.0101"}],
            })

    def test_stranger_account_forbidden(self, transaction_service, account_service, alice_account, carol_account):
        """Test referencing an account of someone who is not a friend."""
        with pytest.raises(ForbiddenError) as exc_info:
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [
                    {"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "10"},
                    {"account_id": carol_account.id, "amount_to_pay": "10", "amount_paid": "10"},
                ],
            })
        assert exc_info.value.kind == ErrorKind.FORBIDDEN
        assert balance_of(account_service, alice_account.id) == Decimal("0")

    def test_missing_account_not_found(self, transaction_service, alice_account):
        with pytest.raises(NotFoundError, match="Account with ID 999 not found"):
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [{"account_id": 999, "amount_to_pay": "10", "amount_paid": "10"}],
            })

    def test_self_stake_required(self, transaction_service, bob_account):
        """Test that the caller must have a row of their own."""
        with pytest.raises(InvalidInputError, match="set to the userId"):
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [{"account_id": bob_account.id, "amount_to_pay": "10", "amount_paid": "10"}],
            })

    def test_same_account_twice_rejected(self, transaction_service, alice_account):
        with pytest.raises(InvalidInputError, match="appears more than once"):
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [
                    {"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "10"},
                    {"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "10"},
                ],
            })

    def test_both_targets_rejected(self, transaction_service, alice_account):
        with pytest.raises(InvalidInputError):
            transaction_service.create_transaction(ALICE, {
                "category": "Food",
                "amounts": [{
                    "account_id": alice_account.id,
                    "account_name": "Alice",
                    "amount_to_pay": "10",
                    "amount_paid": "10",
                }],
            })

    def test_missing_category_reports_field(self, transaction_service, alice_account):
        with pytest.raises(InvalidInputError) as exc_info:
            transaction_service.create_transaction(ALICE, {
                "amounts": [{"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "10"}],
            })
        assert exc_info.value.issues[0].field == "category"

    def test_repeated_tag_rejected(self, transaction_service, alice_account, bob_account):
        with pytest.raises(InvalidInputError, match="appears more than once"):
            transaction_service.create_transaction(
                ALICE, split(alice_account, bob_account, tags=["Trip", "trip"])
            )


class TestReadTransaction:
    """Tests for transitive access."""

    def test_participants_can_read(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        assert transaction_service.get_transaction(ALICE, created.id) == created
        assert transaction_service.get_transaction(BOB, created.id).id == created.id

    def test_outsider_gets_not_found(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(NotFoundError, match="Transaction not found"):
            transaction_service.get_transaction(CAROL, created.id)
        assert transaction_service.has_access_to_transaction(CAROL, created.id) is False

    def test_missing_transaction(self, transaction_service):
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(ALICE, 12345)


class TestUpdateTransaction:
    """Tests for partial header updates and full-state row updates."""

    def test_header_partial_update(self, transaction_service, account_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        updated = transaction_service.update_transaction(ALICE, created.id, {"description": "Lunch"})
        assert updated.description == "Lunch"
        assert updated.category == "Food"
        assert updated.amounts == created.amounts
        assert balance_of(account_service, alice_account.id) == Decimal("-60")

    def test_clear_notes(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, notes="split evenly")
        )
        updated = transaction_service.update_transaction(ALICE, created.id, {"notes": ""})
        assert updated.notes is None

    def test_income_patch_applies_delta(self, transaction_service, account_service, alice_account):
        """Test amount_paid 50 -> 70 on income moves the balance by exactly 20."""
        created = transaction_service.create_transaction(ALICE, {
            "category": "Refund",
            "is_income": True,
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "50", "amount_paid": "50"}],
        })
        assert balance_of(account_service, alice_account.id) == Decimal("50")

        row = created.amounts[0]
        transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [{"id": row.id, "amount_to_pay": "70", "amount_paid": "70"}],
        })
        assert balance_of(account_service, alice_account.id) == Decimal("70")

    def test_expense_patch_applies_delta(self, transaction_service, account_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        alice_row = row_for(created, alice_account.id)
        bob_row = row_for(created, bob_account.id)

        updated = transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [
                {"id": alice_row.id, "amount_to_pay": "20", "amount_paid": "50"},
                {"id": bob_row.id},
            ],
        })
        assert row_for(updated, alice_account.id).amount_paid == Decimal("50")
        assert balance_of(account_service, alice_account.id) == Decimal("-50")
        assert balance_of(account_service, bob_account.id) == Decimal("0")

    def test_unlisted_rows_are_deleted(self, transaction_service, account_service, alice_account, bob_account):
        created = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("30", "30"), bob=("30", "30"))
        )
        assert balance_of(account_service, bob_account.id) == Decimal("-30")

        alice_row = row_for(created, alice_account.id)
        updated = transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [{"id": alice_row.id}],
        })
        assert [a.id for a in updated.amounts] == [alice_row.id]
        assert balance_of(account_service, bob_account.id) == Decimal("0")
        assert balance_of(account_service, alice_account.id) == Decimal("-30")

    def test_insert_new_row(self, transaction_service, account_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, {
            "category": "Food",
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "30", "amount_paid": "30"}],
        })
        alice_row = created.amounts[0]

        updated = transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [
                {"id": alice_row.id, "amount_to_pay": "15"},
                {"account_id": bob_account.id, "amount_to_pay": "15", "amount_paid": "0"},
            ],
        })
        assert len(updated.amounts) == 2
        assert updated.total_to_pay == Decimal("30")
        assert balance_of(account_service, bob_account.id) == Decimal("0")
        assert balance_of(account_service, alice_account.id) == Decimal("-30")

    def test_new_row_needs_both_amounts(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        entries = [{"id": a.id} for a in created.amounts]
        entries.append({"account_name": "Dave", "amount_to_pay": "0"})

        with pytest.raises(InvalidInputError, match="Amount paid must be provided"):
            transaction_service.update_transaction(ALICE, created.id, {"amounts": entries})

    def test_new_row_needs_a_target(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        entries = [{"id": a.id} for a in created.amounts]
        entries.append({"amount_to_pay": "0", "amount_paid": "0"})

        with pytest.raises(InvalidInputError, match="Either accountId or accountName"):
            transaction_service.update_transaction(ALICE, created.id, {"amounts": entries})

    def test_retarget_to_external_refunds_account(
        self, transaction_service, account_service, alice_account, bob_account
    ):
        created = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("30", "30"), bob=("30", "30"))
        )
        alice_row = row_for(created, alice_account.id)
        bob_row = row_for(created, bob_account.id)

        updated = transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [
                {"id": alice_row.id},
                {"id": bob_row.id, "account_name": "Bob (cash)"},
            ],
        })
        moved = next(a for a in updated.amounts if a.id == bob_row.id)
        assert moved.account_id is None
        assert moved.account_name == "Bob (cash)"
        assert balance_of(account_service, bob_account.id) == Decimal("0")

    def test_retarget_to_stranger_forbidden(
        self, transaction_service, account_service, alice_account, bob_account, carol_account
    ):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        bob_row = row_for(created, bob_account.id)

        with pytest.raises(ForbiddenError):
            transaction_service.update_transaction(ALICE, created.id, {
                "amounts": [
                    {"id": row_for(created, alice_account.id).id},
                    {"id": bob_row.id, "account_id": carol_account.id},
                ],
            })
        assert transaction_service.get_transaction(ALICE, created.id) == created

    def test_retarget_onto_account_already_in_transaction(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(InvalidInputError, match="appears more than once"):
            transaction_service.update_transaction(ALICE, created.id, {
                "amounts": [
                    {"id": row_for(created, alice_account.id).id},
                    {"id": row_for(created, bob_account.id).id, "account_id": alice_account.id},
                ],
            })

    def test_rows_swap_accounts(self, transaction_service, account_service, alice_account, bob_account):
        """Test that two rows may trade accounts in one update."""
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        alice_row = row_for(created, alice_account.id)
        bob_row = row_for(created, bob_account.id)

        updated = transaction_service.update_transaction(ALICE, created.id, {
            "amounts": [
                {"id": alice_row.id, "account_id": bob_account.id},
                {"id": bob_row.id, "account_id": alice_account.id},
            ],
        })

        assert row_for(updated, bob_account.id).id == alice_row.id
        assert row_for(updated, bob_account.id).amount_paid == Decimal("60")
        assert row_for(updated, alice_account.id).id == bob_row.id
        assert row_for(updated, alice_account.id).amount_paid == Decimal("0")
        assert balance_of(account_service, alice_account.id) == Decimal("0")
        assert balance_of(account_service, bob_account.id) == Decimal("-60")

    def test_unknown_amount_id_rejected(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(InvalidInputError, match="doesn't belong to this transaction"):
            transaction_service.update_transaction(ALICE, created.id, {
                "amounts": [{"id": 9999, "amount_paid": "1"}],
            })

    def test_income_flip_reverses_and_reapplies(self, transaction_service, account_service, alice_account):
        created = transaction_service.create_transaction(ALICE, {
            "category": "Transfer",
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "100", "amount_paid": "100"}],
        })
        assert balance_of(account_service, alice_account.id) == Decimal("-100")

        updated = transaction_service.update_transaction(ALICE, created.id, {"is_income": True})
        assert updated.is_income is True
        assert balance_of(account_service, alice_account.id) == Decimal("100")

        transaction_service.update_transaction(ALICE, created.id, {"is_income": False})
        assert balance_of(account_service, alice_account.id) == Decimal("-100")

    def test_unbalanced_update_rolls_back(self, transaction_service, account_service, alice_account, bob_account):
        """Test that a failing sum check undoes every row change and balance move."""
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))

        with pytest.raises(InvalidInputError, match="Sum of Amount Paid"):
            transaction_service.update_transaction(ALICE, created.id, {
                "description": "Should not stick",
                "amounts": [
                    {"id": row_for(created, alice_account.id).id, "amount_paid": "999"},
                    {"id": row_for(created, bob_account.id).id},
                ],
            })

        assert transaction_service.get_transaction(ALICE, created.id) == created
        assert balance_of(account_service, alice_account.id) == Decimal("-60")

    def test_update_must_keep_a_registered_row(self, transaction_service, alice_account):
        created = transaction_service.create_transaction(ALICE, {
            "category": "Food",
            "amounts": [{"account_id": alice_account.id, "amount_to_pay": "10", "amount_paid": "10"}],
        })
        with pytest.raises(InvalidInputError, match="At least one amount must have accountId set"):
            transaction_service.update_transaction(ALICE, created.id, {
                "amounts": [{"account_name": "Someone", "amount_to_pay": "10", "amount_paid": "10"}],
            })

    def test_outsider_cannot_update(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(NotFoundError):
            transaction_service.update_transaction(CAROL, created.id, {"description": "Mine"})

    def test_null_category_rejected(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(InvalidInputError):
            transaction_service.update_transaction(ALICE, created.id, {"category": None})


class TestDrainToDelete:
    """Tests for removing every split row."""

    def test_empty_amounts_deletes_transaction(
        self, transaction_service, account_service, alice_account, bob_account
    ):
        created = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("30", "40"), bob=("30", "20"), tags=["x"])
        )
        result = transaction_service.update_transaction(ALICE, created.id, {"amounts": []})

        assert result is None
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(ALICE, created.id)
        assert balance_of(account_service, alice_account.id) == Decimal("0")
        assert balance_of(account_service, bob_account.id) == Decimal("0")

    def test_empty_amounts_with_header_change_rejected(
        self, transaction_service, account_service, alice_account, bob_account
    ):
        """Test that draining and editing in one call stays ambiguous and is refused."""
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))

        with pytest.raises(InvalidInputError, match="cannot be deleted if it has updates"):
            transaction_service.update_transaction(ALICE, created.id, {
                "description": "Gone",
                "amounts": [],
            })

        assert transaction_service.get_transaction(ALICE, created.id) == created
        assert balance_of(account_service, alice_account.id) == Decimal("-60")


class TestDeleteTransaction:
    """Tests for explicit deletion."""

    def test_delete_reverses_balances(self, transaction_service, account_service, alice_account, bob_account):
        created = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("30", "45"), bob=("30", "15"))
        )
        transaction_service.delete_transaction(BOB, created.id)

        assert balance_of(account_service, alice_account.id) == Decimal("0")
        assert balance_of(account_service, bob_account.id) == Decimal("0")
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(ALICE, created.id)

    def test_outsider_cannot_delete(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        with pytest.raises(NotFoundError):
            transaction_service.delete_transaction(CAROL, created.id)
        assert transaction_service.get_transaction(ALICE, created.id).id == created.id

    def test_deleted_transaction_cannot_be_updated(self, transaction_service, alice_account, bob_account):
        created = transaction_service.create_transaction(ALICE, split(alice_account, bob_account))
        transaction_service.delete_transaction(ALICE, created.id)

        with pytest.raises(NotFoundError):
            transaction_service.update_transaction(ALICE, created.id, {"description": "Again"})
        with pytest.raises(NotFoundError):
            transaction_service.delete_transaction(ALICE, created.id)


class TestBalanceInvariant:
    """Balance equals the signed sum of amount_paid after any sequence of operations."""

    def test_sequence_keeps_balances_consistent(
        self, transaction_service, account_service, alice_account, bob_account
    ):
        first = transaction_service.create_transaction(
            ALICE, split(alice_account, bob_account, alice=("25", "50"), bob=("25", "0"))
        )
        second = transaction_service.create_transaction(BOB, {
            "category": "Salary share",
            "is_income": True,
            "amounts": [
                {"account_id": bob_account.id, "amount_to_pay": "80", "amount_paid": "80"},
                {"account_id": alice_account.id, "amount_to_pay": "20", "amount_paid": "20"},
            ],
        })
        transaction_service.update_transaction(ALICE, first.id, {
            "amounts": [
                {"id": row_for(first, alice_account.id).id, "amount_paid": "30"},
                {"id": row_for(first, bob_account.id).id, "amount_paid": "20"},
            ],
        })
        transaction_service.update_transaction(BOB, second.id, {"is_income": False})

        # first: alice -30, bob -20 (expense); second: bob -80, alice -20 (now expense)
        assert balance_of(account_service, alice_account.id) == Decimal("-50")
        assert balance_of(account_service, bob_account.id) == Decimal("-100")

        transaction_service.delete_transaction(ALICE, second.id)
        assert balance_of(account_service, alice_account.id) == Decimal("-30")
        assert balance_of(account_service, bob_account.id) == Decimal("-20")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
