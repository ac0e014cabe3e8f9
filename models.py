import hashlib
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal


class Transaction(BaseModel):
    id: str = Field(..., description="Content hash of date, object and amount")
    date: str = Field(..., description="Transaction date, expected as YYYY-MM-DD")
    object: str = Field(..., description="Free-text label")
    amount: float = Field(..., description="Signed amount (positive for credit, negative for debit)")


class Account(BaseModel):
    user: str = Field(..., description="Account owner, unique in the store")
    currency: str = Field(..., description="Currency label")
    description: str = Field(..., description="Account description")
    balance: float = Field(0.0, description="Running sum of transaction amounts")
    transactions: List[Transaction] = Field(default_factory=list)


# Request bodies keep every field optional so that presence checks
# are reported as 400 by the service layer rather than as 422.
class AccountCreateRequest(BaseModel):
    user: Optional[str] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    balance: Any = Field(None, description="Opening balance, number or numeric string")


class AccountUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    currency: Optional[str] = None
    description: Optional[str] = None

    def submitted_fields(self) -> set:
        """Names of every field present in the request body."""
        return set(self.model_fields_set) | set(self.model_extra or {})


class TransactionCreateRequest(BaseModel):
    date: Optional[str] = None
    object: Optional[str] = None
    amount: Any = Field(None, description="Signed amount, number or numeric string")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of accounts in the store")
    transactions_count: int = Field(..., description="Number of transactions across all accounts")


def _format_float(value: float) -> str:
    """Format a float with the shortest round-trip digits and JSON-style exponents."""
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    _, digits, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digits)
    k = len(digits)
    n = exponent + k
    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = f"{digits[:n]}.{digits[n:]}"
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return f"-{text}" if value < 0 else text


def render_amount(amount: Any) -> str:
    """Render an amount as it appears in a JSON document.

    Integral floats drop their fractional part so that ``20`` and ``20.0``
    render identically, and exponents follow the JSON number form
    (``1e-7``, ``1e+21``).
    """
    if isinstance(amount, bool):
        return "true" if amount else "false"
    if isinstance(amount, float):
        return _format_float(amount)
    if isinstance(amount, int) and abs(amount) >= 10 ** 21:
        return _format_float(float(amount))
    return str(amount)


def transaction_id(date: str, object: str, amount: Any) -> str:
    """Derive the transaction id from its content.

    Identical (date, object, amount) triples always produce the same id, which
    is what lets the store reject duplicate submissions.
    """
    content = f"{date}{object}{render_amount(amount)}"
    return hashlib.md5(content.encode("utf-8")).hexdigest()
