import math
from typing import Any
import structlog

from exceptions import ConflictError, NotFoundError, ValidationError
from models import (
    Account,
    AccountCreateRequest,
    AccountUpdateRequest,
    Transaction,
    TransactionCreateRequest,
    transaction_id,
)
from repositories import AccountRepository

logger = structlog.get_logger()

EDITABLE_ACCOUNT_FIELDS = {"currency", "description"}


def parse_number(value: Any, field: str) -> float:
    """Convert a number or numeric string to float.

    Raises ValidationError when the value does not describe a finite number.
    """
    message = f"{field.capitalize()} must be a number"
    if isinstance(value, bool):
        raise ValidationError(message)
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            number = float(str(value).strip())
    except (ValueError, OverflowError):
        raise ValidationError(message)
    if not math.isfinite(number):
        raise ValidationError(message)
    return number


class BudgetService:
    def __init__(self, account_repo: AccountRepository):
        self.account_repo = account_repo

    async def create_account(self, request: AccountCreateRequest) -> Account:
        if not request.user or not request.currency:
            logger.warning("Account creation rejected", reason="missing parameters")
            raise ValidationError("Missing parameters")

        async with self.account_repo.account_lock(request.user):
            if await self.account_repo.account_exists(request.user):
                logger.warning("Account creation rejected", user=request.user, reason="user exists")
                raise ConflictError("User already exists")

            balance = 0.0
            if request.balance:
                balance = parse_number(request.balance, "balance")

            account = Account(
                user=request.user,
                currency=request.currency,
                description=request.description or f"{request.user}'s budget",
                balance=balance,
            )
            await self.account_repo.add_account(account)

        logger.info("Account created", user=account.user, currency=account.currency, balance=account.balance)
        return account

    async def get_account(self, user: str) -> Account:
        account = await self.account_repo.get_account(user)
        if account is None:
            logger.warning("Account not found", user=user)
            raise NotFoundError("User does not exist")
        return account

    async def update_account(self, user: str, request: AccountUpdateRequest) -> Account:
        async with self.account_repo.account_lock(user):
            account = await self.get_account(user)

            if request.submitted_fields() - EDITABLE_ACCOUNT_FIELDS:
                logger.warning("Account update rejected", user=user, fields=sorted(request.submitted_fields()))
                raise ValidationError("Only currency and description are editable")

            if request.currency:
                account.currency = request.currency
            if request.description:
                account.description = request.description

        logger.info("Account updated", user=user, currency=account.currency)
        return account

    async def delete_account(self, user: str) -> None:
        async with self.account_repo.account_lock(user):
            await self.get_account(user)
            await self.account_repo.delete_account(user)

        logger.info("Account deleted", user=user)

    async def add_transaction(self, user: str, request: TransactionCreateRequest) -> Transaction:
        async with self.account_repo.account_lock(user):
            account = await self.get_account(user)

            # An amount of 0 counts as missing
            if not request.date or not request.object or not request.amount:
                logger.warning("Transaction rejected", user=user, reason="missing parameters")
                raise ValidationError("Missing parameters")

            amount = parse_number(request.amount, "amount")
            # The id hashes the amount as submitted, before parsing
            tx_id = transaction_id(request.date, request.object, request.amount)

            if any(t.id == tx_id for t in account.transactions):
                logger.warning("Transaction rejected", user=user, transaction_id=tx_id, reason="duplicate")
                raise ConflictError("Transaction already exists")

            transaction = Transaction(id=tx_id, date=request.date, object=request.object, amount=amount)
            account.transactions.append(transaction)
            account.balance += transaction.amount

        logger.info(
            "Transaction added",
            user=user,
            transaction_id=tx_id,
            amount=amount,
            new_balance=account.balance,
        )
        return transaction

    async def remove_transaction(self, user: str, tx_id: str) -> None:
        async with self.account_repo.account_lock(user):
            account = await self.get_account(user)

            index = next((i for i, t in enumerate(account.transactions) if t.id == tx_id), None)
            if index is None:
                logger.warning("Transaction not found", user=user, transaction_id=tx_id)
                raise NotFoundError("Transaction does not exist")

            transaction = account.transactions.pop(index)
            account.balance -= transaction.amount

        logger.info(
            "Transaction removed",
            user=user,
            transaction_id=tx_id,
            amount=transaction.amount,
            new_balance=account.balance,
        )


# Factory function for dependency injection
def get_budget_service(account_repo: AccountRepository) -> BudgetService:
    return BudgetService(account_repo)
