import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from models.backup import deserialize
from models.ledger import (
    AppSettings,
    DailyStat,
    Expense,
    ExpenseCategory,
    LineItem,
    Product,
    ResetScope,
    Transaction,
    parse_enum,
    now,
)

LOG = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class AppState:
    """Session ledger and settings. All mutation goes through the methods below."""

    products: List[Product] = field(default_factory=list)
    history: List[DailyStat] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    base_visits: int = 0
    settings: AppSettings = field(default_factory=AppSettings)

    def get_product(self, product_id: str) -> Product:
        for p in self.products:
            if p.id == product_id:
                return p
        raise KeyError(f"Unknown product: {product_id}")

    # -------- Sales --------
    def add_sale(self, cart: Iterable[Tuple[str, int]], timestamp: Optional[datetime] = None) -> Transaction:
        """Record one bill for `cart` of (product_id, qty) pairs.

        Stock is decremented and sales_count incremented per product. Stock
        may go negative; an oversell is only logged.
        """
        qty_by_id: Dict[str, int] = {}
        for product_id, qty in cart:
            if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
                raise ValueError(f"Quantity for {product_id} must be a positive integer")
            qty_by_id[product_id] = qty_by_id.get(product_id, 0) + qty
        if not qty_by_id:
            raise ValueError("Cart is empty")
        items = []
        for product_id, qty in qty_by_id.items():
            p = self.get_product(product_id)
            items.append(LineItem(product_id=p.id, quantity=qty, name=p.name, price=p.price))

        tx = Transaction.from_cart(new_id(), timestamp or now(), items)
        self.transactions.insert(0, tx)

        updated = []
        for p in self.products:
            qty = qty_by_id.get(p.id)
            if qty:
                p = replace(p, stock=p.stock - qty, sales_count=p.sales_count + qty)
                if p.stock < 0:
                    LOG.warning("Oversold %s: stock is now %d", p.name, p.stock)
            updated.append(p)
        self.products = updated
        return tx

    # -------- Products --------
    def add_product(self, name: str, price: float, stock: int, category: str = "General") -> Product:
        if not name or not name.strip():
            raise ValueError("Product name is required")
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
            raise ValueError("Price must be a non-negative number")
        if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
            raise ValueError("Stock must be a non-negative integer")
        product = Product(id=new_id(), name=name.strip(), price=price, stock=stock, category=category or "General")
        self.products.insert(0, product)
        return product

    def delete_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        self.products = [p for p in self.products if p.id != product_id]
        return product

    # -------- Expenses / visits --------
    def add_expense(self, title: str, amount: float, category="Misc", timestamp: Optional[datetime] = None) -> Expense:
        if not title or not title.strip():
            raise ValueError("Expense title is required")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0:
            raise ValueError("Amount must be a non-negative number")
        expense = Expense(
            id=new_id(),
            title=title.strip(),
            amount=amount,
            timestamp=timestamp or now(),
            category=parse_enum(ExpenseCategory, category, "expense category"),
        )
        self.expenses.insert(0, expense)
        return expense

    def add_walk_in(self, count: int = 1) -> int:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValueError("count must be a positive integer")
        self.base_visits += count
        return self.base_visits

    # -------- Settings --------
    def update_settings(self, changes: Dict) -> AppSettings:
        self.settings = self.settings.merged(changes)
        return self.settings

    # -------- Reset / restore --------
    def reset(self, scope) -> None:
        scope = parse_enum(ResetScope, scope, "reset scope")
        self.transactions = []
        self.expenses = []
        self.base_visits = 0
        if scope is ResetScope.MONTHLY:
            self.history = []
        LOG.info("Reset %s data", scope.value)

    def restore(self, document: Dict) -> List[str]:
        """Apply a backup document; returns the restored field names.

        The document is fully decoded before anything is assigned, so a bad
        document leaves the state untouched.
        """
        patch = deserialize(document)
        for key, value in patch.items():
            setattr(self, key, value)
        LOG.info("Restored backup fields: %s", ", ".join(patch))
        return list(patch)
