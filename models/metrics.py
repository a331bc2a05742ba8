import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from models.ledger import DailyStat, Expense, Product, Transaction

# Revenue share kept after cost of goods (60%).
GROSS_MARGIN = 0.40
LOW_STOCK_THRESHOLD = 15
UNKNOWN_CATEGORY = "Other"

# (label, start hour inclusive, end hour exclusive)
HOUR_BUCKETS = [
    ("8AM", 8, 10),
    ("10AM", 10, 12),
    ("12PM", 12, 14),
    ("2PM", 14, 16),
    ("4PM", 16, 18),
    ("6PM", 18, 20),
    ("8PM", 20, 24),
]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def todays_sales(transactions: Sequence[Transaction]) -> float:
    return sum(t.total_amount for t in transactions)


def total_expenses(expenses: Sequence[Expense]) -> float:
    return sum(e.amount for e in expenses)


def profit(sales: float, expenses: float) -> int:
    """Estimated profit; cost of goods is assumed, not derived from item costs."""
    return round_half_up(sales * GROSS_MARGIN - expenses)


def customer_count(transactions: Sequence[Transaction], base_visits: int = 0) -> int:
    return len({t.id for t in transactions}) + base_visits


def yesterday_sales(history: Sequence[DailyStat]) -> float:
    return history[-1].sales if history else 0


def sales_growth(yesterday: float, today: float) -> float:
    if yesterday > 0:
        return (today - yesterday) / yesterday * 100
    if yesterday == 0 and today > 0:
        # 0 -> anything is reported as +100% rather than an infinite ratio
        return 100
    return 0


def avg_billing(sales: float, transaction_count: int) -> int:
    if transaction_count > 0:
        return round_half_up(sales / transaction_count)
    return 0


def top_products(products: Sequence[Product]) -> List[Product]:
    return sorted(products, key=lambda p: p.sales_count, reverse=True)


def low_stock_products(products: Sequence[Product], threshold: int = LOW_STOCK_THRESHOLD) -> List[Product]:
    return [p for p in products if p.stock < threshold]


def _local_hour(ts: datetime) -> int:
    if ts.tzinfo is not None:
        ts = ts.astimezone()
    return ts.hour


def hourly_breakdown(transactions: Sequence[Transaction]) -> List[Dict]:
    """Sales per 2-hour bucket between 8AM and midnight.

    Transactions before 8AM fall in no bucket and are not counted.
    """
    totals = [0.0] * len(HOUR_BUCKETS)
    for tx in transactions:
        hour = _local_hour(tx.timestamp)
        for idx, (_, start, end) in enumerate(HOUR_BUCKETS):
            if start <= hour < end:
                totals[idx] += tx.total_amount
                break
    return [{"hour": label, "sales": totals[idx]} for idx, (label, _, _) in enumerate(HOUR_BUCKETS)]


def category_breakdown(transactions: Sequence[Transaction], products: Sequence[Product]) -> List[Dict]:
    """Revenue per product category, largest first.

    The category comes from the current product list, not the line item, so a
    recategorized product moves its past revenue too. Unknown ids count as
    "Other".
    """
    if not transactions:
        return []
    by_id = {p.id: p for p in products}
    stats: Dict[str, float] = {}
    for tx in transactions:
        for item in tx.items:
            product = by_id.get(item.product_id)
            category = product.category if product and product.category else UNKNOWN_CATEGORY
            stats[category] = stats.get(category, 0.0) + item.amount
    total = sum(stats.values())
    rows = sorted(stats.items(), key=lambda kv: kv[1], reverse=True)
    return [
        {"name": name, "value": value, "percentage": round(value / total * 100, 2) if total else 0.0}
        for name, value in rows
    ]


def today_stat(transactions: Sequence[Transaction], base_visits: int = 0, day: Optional[date] = None) -> DailyStat:
    day = day or date.today()
    return DailyStat(
        date=day.isoformat(),
        sales=todays_sales(transactions),
        transactions=len(transactions),
        customers=customer_count(transactions, base_visits),
    )


def trends_history(history: Sequence[DailyStat], today: DailyStat) -> List[DailyStat]:
    return list(history) + [today]


def sales_sparkline(history: Sequence[DailyStat], days: int = 7) -> List[float]:
    if not history:
        return [0] * days
    return [h.sales for h in history[-days:]]


@dataclass
class DashboardMetrics:
    todays_sales: float
    total_expenses: float
    profit: int
    transaction_count: int
    customer_count: int
    sales_growth: float
    avg_billing: int
    top_products: List[Product] = field(default_factory=list)
    low_stock_products: List[Product] = field(default_factory=list)
    sparkline: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "todaysSales": self.todays_sales,
            "totalExpenses": self.total_expenses,
            "profit": self.profit,
            "transactionCount": self.transaction_count,
            "customerCount": self.customer_count,
            "salesGrowth": self.sales_growth,
            "avgBilling": self.avg_billing,
            "topProducts": [p.to_dict() for p in self.top_products],
            "lowStockProducts": [p.to_dict() for p in self.low_stock_products],
            "sparkline": self.sparkline,
        }


def compute_dashboard(
    products: Sequence[Product],
    transactions: Sequence[Transaction],
    expenses: Sequence[Expense],
    history: Sequence[DailyStat],
    base_visits: int = 0,
) -> DashboardMetrics:
    sales = todays_sales(transactions)
    spent = total_expenses(expenses)
    count = len(transactions)
    return DashboardMetrics(
        todays_sales=sales,
        total_expenses=spent,
        profit=profit(sales, spent),
        transaction_count=count,
        customer_count=customer_count(transactions, base_visits),
        sales_growth=sales_growth(yesterday_sales(history), sales),
        avg_billing=avg_billing(sales, count),
        top_products=top_products(products),
        low_stock_products=low_stock_products(products),
        sparkline=sales_sparkline(history),
    )


def compute_trends(
    products: Sequence[Product],
    transactions: Sequence[Transaction],
    history: Sequence[DailyStat],
    base_visits: int = 0,
    day: Optional[date] = None,
) -> Dict:
    today = today_stat(transactions, base_visits, day)
    return {
        "history": [h.to_dict() for h in trends_history(history, today)],
        "hourly": hourly_breakdown(transactions),
        "categories": category_breakdown(transactions, products),
        "salesGrowth": sales_growth(yesterday_sales(history), today.sales),
    }
