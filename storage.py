from typing import Dict, List

from models import Account, Transaction, transaction_id

# Demo data loaded when seed_demo_data is enabled
DEMO_TRANSACTIONS: List[dict] = [
    {"date": "2022-10-25", "object": "Pocket money", "amount": 50},
    {"date": "2022-10-26", "object": "Book", "amount": -10},
    {"date": "2022-10-28", "object": "Sandwich", "amount": -5},
]


def build_demo_accounts() -> Dict[str, Account]:
    transactions = [
        Transaction(id=transaction_id(t["date"], t["object"], t["amount"]), **t)
        for t in DEMO_TRANSACTIONS
    ]
    account = Account(
        user="test",
        currency="$",
        description="Test account",
        balance=sum(t.amount for t in transactions),
        transactions=transactions,
    )
    return {account.user: account}
