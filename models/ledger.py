from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Tuple


class ExpenseCategory(str, Enum):
    RENT = "Rent"
    UTILITY = "Utility"
    SALARY = "Salary"
    MISC = "Misc"


class Language(str, Enum):
    ENGLISH = "English"
    HINDI = "Hindi (हिंदी)"
    GUJARATI = "Gujarati (ગુજરાતી)"
    HINGLISH = "Hinglish"


class StockSeverity(str, Enum):
    LOW = "low"
    CRITICAL = "critical"


class ResetScope(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


def parse_enum(cls, value, what: str):
    try:
        return cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in cls)
        raise ValueError(f"Invalid {what} {value!r}; expected one of: {allowed}")


def _number(data: Dict, key: str, minimum=None) -> float:
    if key not in data:
        raise ValueError(f"Missing field: {key}")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    if minimum is not None and value < minimum:
        raise ValueError(f"{key} must be >= {minimum}")
    return value


def _integer(data: Dict, key: str) -> int:
    value = _number(data, key)
    if int(value) != value:
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _text(data: Dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _ident(data: Dict) -> str:
    value = data.get("id")
    if value is None or value == "":
        raise ValueError("Missing field: id")
    return str(value)


def parse_timestamp(value) -> datetime:
    """Accept a datetime or an ISO-8601 string (a trailing 'Z' means UTC)."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO-8601 string")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    return datetime.fromisoformat(text)


def now() -> datetime:
    return datetime.now(timezone.utc).astimezone()


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    stock: int
    category: str = "General"
    sales_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "stock": self.stock,
            "category": self.category,
            "salesCount": self.sales_count,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Product":
        return cls(
            id=_ident(data),
            name=_text(data, "name"),
            price=_number(data, "price", minimum=0),
            stock=_integer(data, "stock"),
            category=data.get("category") or "General",
            sales_count=_integer(data, "salesCount") if "salesCount" in data else 0,
        )


@dataclass(frozen=True)
class LineItem:
    product_id: str
    quantity: int
    name: str
    price: float

    @property
    def amount(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> Dict:
        return {"productId": self.product_id, "quantity": self.quantity, "name": self.name, "price": self.price}

    @classmethod
    def from_dict(cls, data: Dict) -> "LineItem":
        return cls(
            product_id=str(data.get("productId", "")),
            quantity=_integer(data, "quantity"),
            name=_text(data, "name"),
            price=_number(data, "price", minimum=0),
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    timestamp: datetime
    items: Tuple[LineItem, ...]
    total_amount: float

    @classmethod
    def from_cart(cls, tx_id: str, timestamp: datetime, items: List[LineItem]) -> "Transaction":
        items = tuple(items)
        return cls(id=tx_id, timestamp=timestamp, items=items, total_amount=sum(i.amount for i in items))

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "totalAmount": self.total_amount,
            "items": [i.to_dict() for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Transaction":
        return cls(
            id=_ident(data),
            timestamp=parse_timestamp(data.get("timestamp")),
            items=tuple(LineItem.from_dict(i) for i in data.get("items", [])),
            total_amount=_number(data, "totalAmount"),
        )


@dataclass(frozen=True)
class Expense:
    id: str
    title: str
    amount: float
    timestamp: datetime
    category: ExpenseCategory = ExpenseCategory.MISC

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Expense":
        return cls(
            id=_ident(data),
            title=_text(data, "title"),
            amount=_number(data, "amount", minimum=0),
            timestamp=parse_timestamp(data.get("timestamp")),
            category=parse_enum(ExpenseCategory, data.get("category"), "expense category"),
        )


@dataclass(frozen=True)
class DailyStat:
    date: str  # YYYY-MM-DD
    sales: float
    transactions: int
    customers: int

    def to_dict(self) -> Dict:
        return {"date": self.date, "sales": self.sales, "transactions": self.transactions, "customers": self.customers}

    @classmethod
    def from_dict(cls, data: Dict) -> "DailyStat":
        return cls(
            date=_text(data, "date"),
            sales=_number(data, "sales"),
            transactions=_integer(data, "transactions"),
            customers=_integer(data, "customers"),
        )


@dataclass(frozen=True)
class AppSettings:
    currency: str = "INR"
    language: Language = Language.ENGLISH
    dark_mode: bool = True
    low_data_mode: bool = False
    offline_mode: bool = False

    _KEYS = {
        "currency": "currency",
        "language": "language",
        "darkMode": "dark_mode",
        "lowDataMode": "low_data_mode",
        "offlineMode": "offline_mode",
    }

    def to_dict(self) -> Dict:
        return {
            "currency": self.currency,
            "language": self.language.value,
            "darkMode": self.dark_mode,
            "lowDataMode": self.low_data_mode,
            "offlineMode": self.offline_mode,
        }

    def merged(self, changes: Dict) -> "AppSettings":
        """Return a copy with the camelCase keys in `changes` applied."""
        values = self.to_dict()
        for key, value in changes.items():
            if key not in self._KEYS:
                raise ValueError(f"Unknown setting: {key}")
            values[key] = value
        return AppSettings.from_dict(values)

    @classmethod
    def from_dict(cls, data: Dict) -> "AppSettings":
        currency = data.get("currency", "INR")
        if not isinstance(currency, str) or not currency.strip():
            raise ValueError("currency must be a non-empty string")
        flags = {}
        for key in ("darkMode", "lowDataMode", "offlineMode"):
            value = data.get(key, key == "darkMode")
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            flags[cls._KEYS[key]] = value
        return cls(
            currency=currency.strip().upper(),
            language=parse_enum(Language, data.get("language", Language.ENGLISH.value), "language"),
            **flags,
        )


@dataclass(frozen=True)
class DayPrediction:
    day: str
    predicted_sales: float
    predicted_profit: float
    confidence: float

    def to_dict(self) -> Dict:
        return {
            "day": self.day,
            "predictedSales": self.predicted_sales,
            "predictedProfit": self.predicted_profit,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DayPrediction":
        confidence = _number(data, "confidence", minimum=0)
        if confidence > 100:
            raise ValueError("confidence must be <= 100")
        return cls(
            day=_text(data, "day"),
            predicted_sales=_number(data, "predictedSales", minimum=0),
            predicted_profit=_number(data, "predictedProfit"),
            confidence=confidence,
        )


@dataclass(frozen=True)
class StockAlert:
    product_name: str
    days_remaining: float
    severity: StockSeverity

    def to_dict(self) -> Dict:
        return {"productName": self.product_name, "daysRemaining": self.days_remaining, "severity": self.severity.value}

    @classmethod
    def from_dict(cls, data: Dict) -> "StockAlert":
        return cls(
            product_name=_text(data, "productName"),
            days_remaining=_number(data, "daysRemaining"),
            severity=parse_enum(StockSeverity, data.get("severity"), "severity"),
        )
