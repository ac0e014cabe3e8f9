import asyncio
import hashlib

import pytest

from exceptions import ConflictError, NotFoundError, ValidationError
from models import AccountCreateRequest, AccountUpdateRequest, TransactionCreateRequest, render_amount, transaction_id
from repositories import InMemoryAccountRepository
from services import BudgetService, parse_number
from storage import build_demo_accounts


@pytest.fixture
def service():
    return BudgetService(InMemoryAccountRepository())


async def open_account(service, user="alice", **kwargs):
    return await service.create_account(AccountCreateRequest(user=user, currency="$", **kwargs))


class TestTransactionId:
    """Test content-derived transaction ids."""

    def test_md5_of_concatenated_fields(self):
        """Test that the id is the md5 of date, object and amount."""
        expected = hashlib.md5(b"2023-01-01Gift20").hexdigest()

        assert transaction_id("2023-01-01", "Gift", 20) == expected
        assert transaction_id("2023-01-01", "Gift", 20.0) == expected
        assert transaction_id("2023-01-01", "Gift", "20") == expected

    def test_distinct_content_gives_distinct_ids(self):
        """Test that changing any part changes the id."""
        assert transaction_id("2023-01-01", "Gift", 20) != transaction_id("2023-01-01", "Gift", -20)
        assert transaction_id("2023-01-01", "Gift", "20.0") != transaction_id("2023-01-01", "Gift", 20)

    @pytest.mark.parametrize("amount,rendered", [
        (20, "20"),
        (20.0, "20"),
        (-5.5, "-5.5"),
        (0.1, "0.1"),
        (123456.789, "123456.789"),
        (1e-7, "1e-7"),
        (-1.5e-7, "-1.5e-7"),
        (0.00001, "0.00001"),
        (1e21, "1e+21"),
        (2.5e22, "2.5e+22"),
        (10 ** 21, "1e+21"),
        ("12.50", "12.50"),
    ])
    def test_render_amount(self, amount, rendered):
        """Test that amounts render as JSON numbers print."""
        assert render_amount(amount) == rendered


class TestParseNumber:
    """Test numeric parsing of amounts and balances."""

    @pytest.mark.parametrize("value,expected", [(3, 3.0), (-2.5, -2.5), ("7", 7.0), (" 1.25 ", 1.25)])
    def test_valid(self, value, expected):
        """Test numbers and numeric strings."""
        assert parse_number(value, "amount") == expected

    @pytest.mark.parametrize("value", ["", "abc", "inf", "-nan", "1e400", False, {"a": 1}, 10 ** 400, -(10 ** 400)])
    def test_invalid(self, value):
        """Test values that do not describe a finite float."""
        with pytest.raises(ValidationError, match="Amount must be a number"):
            parse_number(value, "amount")


class TestBudgetService:
    """Test the service layer directly."""

    @pytest.mark.asyncio
    async def test_create_and_get_account(self, service):
        """Test that a created account can be read back."""
        created = await open_account(service, balance="10")
        fetched = await service.get_account("alice")

        assert fetched is created
        assert fetched.balance == 10.0
        assert fetched.description == "alice's budget"

    @pytest.mark.asyncio
    async def test_duplicate_account(self, service):
        """Test that a duplicate user leaves the balance untouched."""
        await open_account(service)

        with pytest.raises(ConflictError):
            await open_account(service, balance=50)

        assert (await service.get_account("alice")).balance == 0

    @pytest.mark.asyncio
    async def test_missing_account(self, service):
        """Test not-found errors for unknown users."""
        with pytest.raises(NotFoundError, match="User does not exist"):
            await service.get_account("nobody")
        with pytest.raises(NotFoundError):
            await service.delete_account("nobody")
        with pytest.raises(NotFoundError):
            await service.remove_transaction("nobody", "abc")

        assert service.account_repo.locks == {}

    @pytest.mark.asyncio
    async def test_huge_balance_is_rejected(self, service):
        """Test that an opening balance beyond float range is rejected."""
        with pytest.raises(ValidationError, match="Balance must be a number"):
            await open_account(service, balance=10 ** 400)

        assert await service.account_repo.get_accounts_count() == 0
        assert service.account_repo.locks == {}

    @pytest.mark.asyncio
    async def test_balance_matches_transactions(self, service):
        """Test that the balance equals the sum of remaining amounts."""
        await open_account(service)
        added = []
        for i, amount in enumerate([12.3, -4.1, 7, "-0.2"]):
            added.append(await service.add_transaction(
                "alice", TransactionCreateRequest(date="2023-02-01", object=f"Item {i}", amount=amount)
            ))
        await service.remove_transaction("alice", added[1].id)

        account = await service.get_account("alice")
        assert account.balance == pytest.approx(sum(t.amount for t in account.transactions))
        assert len({t.id for t in account.transactions}) == len(account.transactions) == 3

    @pytest.mark.asyncio
    async def test_update_rejects_protected_fields(self, service):
        """Test that only currency and description are editable."""
        await open_account(service)

        with pytest.raises(ValidationError):
            await service.update_account("alice", AccountUpdateRequest(balance=10))

        updated = await service.update_account("alice", AccountUpdateRequest(description="Groceries"))
        assert updated.description == "Groceries"
        assert updated.currency == "$"

    @pytest.mark.asyncio
    async def test_concurrent_transactions_same_account(self, service):
        """Test multiple concurrent transactions on the same account."""
        await open_account(service)

        await asyncio.gather(*[
            service.add_transaction(
                "alice", TransactionCreateRequest(date="2023-03-01", object=f"Coffee {i}", amount=-2.5)
            )
            for i in range(10)
        ])

        account = await service.get_account("alice")
        assert len(account.transactions) == 10
        assert account.balance == pytest.approx(-25.0)
        assert service.account_repo.locks == {}

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_add_once(self, service):
        """Test that concurrent identical submissions add one transaction."""
        await open_account(service)
        request = TransactionCreateRequest(date="2023-03-01", object="Rent", amount=-500)

        results = await asyncio.gather(
            *[service.add_transaction("alice", request) for _ in range(5)],
            return_exceptions=True
        )

        assert len([r for r in results if isinstance(r, ConflictError)]) == 4
        account = await service.get_account("alice")
        assert len(account.transactions) == 1
        assert account.balance == -500

    @pytest.mark.asyncio
    async def test_waiters_keep_the_lock_across_delete(self, service):
        """Test that a delete does not hand a fresh lock to queued requests."""
        await open_account(service, balance=5)
        repo = service.account_repo

        async with repo.account_lock("alice"):
            delete = asyncio.create_task(service.delete_account("alice"))
            create = asyncio.create_task(open_account(service))
            await asyncio.sleep(0)

            assert repo.lock_users["alice"] == 3
            assert len(repo.locks) == 1

        await delete
        created = await create

        assert created.balance == 0
        assert await repo.get_accounts_count() == 1
        assert repo.locks == {}


class TestDemoData:
    """Test the demo seed."""

    def test_demo_account_is_consistent(self):
        """Test that the seeded balance matches its transactions."""
        account = build_demo_accounts()["test"]

        assert account.balance == sum(t.amount for t in account.transactions) == 35
        assert account.transactions[0].id == transaction_id("2022-10-25", "Pocket money", 50)

    @pytest.mark.asyncio
    async def test_seeded_repository(self):
        """Test repository counters over the seed."""
        repo = InMemoryAccountRepository(build_demo_accounts())

        assert await repo.get_accounts_count() == 1
        assert await repo.get_transactions_count() == 3
