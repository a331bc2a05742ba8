from datetime import datetime

from models.ledger import DailyStat, Expense, ExpenseCategory, LineItem, Product, Transaction
from models.metrics import (
    avg_billing,
    category_breakdown,
    compute_dashboard,
    customer_count,
    hourly_breakdown,
    low_stock_products,
    profit,
    sales_growth,
    sales_sparkline,
    top_products,
)


def _tx(tx_id, hour, items):
    lines = [LineItem(product_id=pid, quantity=qty, name=pid, price=price) for pid, qty, price in items]
    return Transaction.from_cart(tx_id, datetime(2025, 9, 1, hour, 15), lines)


def test_profit_uses_forty_percent_margin():
    assert profit(1000, 200) == 200
    assert profit(0, 0) == 0
    # half rounds up
    assert profit(1.25, 0) == 1
    assert profit(3.75, 0) == 2


def test_sales_growth_cases():
    assert sales_growth(0, 0) == 0
    assert sales_growth(0, 120) == 100
    assert sales_growth(100, 150) == 50.0
    assert sales_growth(200, 100) == -50.0


def test_customer_count_counts_ids_once():
    txs = [_tx("a", 9, [("p", 1, 10)]), _tx("a", 10, [("p", 1, 10)]), _tx("b", 11, [("p", 1, 10)])]
    assert customer_count(txs) == 2
    assert customer_count(txs, base_visits=3) == 5


def test_avg_billing():
    assert avg_billing(0, 0) == 0
    assert avg_billing(250, 2) == 125
    assert avg_billing(101, 2) == 51


def test_top_products_stable_and_low_stock():
    products = [
        Product(id="1", name="Tea", price=10, stock=20, sales_count=5),
        Product(id="2", name="Milk", price=30, stock=3, sales_count=9),
        Product(id="3", name="Bread", price=40, stock=14, sales_count=5),
    ]
    assert [p.id for p in top_products(products)] == ["2", "1", "3"]
    assert [p.id for p in low_stock_products(products)] == ["2", "3"]


def test_hourly_breakdown_buckets():
    txs = [
        _tx("a", 7, [("p", 1, 99)]),   # before 8AM, not counted
        _tx("b", 8, [("p", 1, 10)]),
        _tx("c", 9, [("p", 2, 10)]),
        _tx("d", 23, [("p", 1, 50)]),
    ]
    rows = hourly_breakdown(txs)
    assert [r["hour"] for r in rows] == ["8AM", "10AM", "12PM", "2PM", "4PM", "6PM", "8PM"]
    assert rows[0]["sales"] == 30
    assert rows[-1]["sales"] == 50
    assert sum(r["sales"] for r in rows) == 80


def test_category_breakdown_uses_current_category():
    products = [
        Product(id="1", name="Tea", price=10, stock=20, category="Beverages"),
        Product(id="2", name="Bread", price=40, stock=20, category="Bakery"),
    ]
    txs = [
        _tx("a", 9, [("1", 2, 10), ("2", 1, 40)]),
        _tx("b", 12, [("gone", 1, 30)]),
    ]
    rows = category_breakdown(txs, products)
    assert [r["name"] for r in rows] == ["Bakery", "Other", "Beverages"]
    assert rows[0]["value"] == 40
    assert abs(sum(r["percentage"] for r in rows) - 100) < 0.1
    assert category_breakdown([], products) == []


def test_sparkline_defaults_to_zeros():
    assert sales_sparkline([]) == [0] * 7
    history = [DailyStat(date=f"2025-09-{d:02d}", sales=d * 100, transactions=1, customers=1) for d in range(1, 10)]
    assert sales_sparkline(history) == [300, 400, 500, 600, 700, 800, 900]


def test_dashboard_expense_scenario():
    products = [Product(id="1", name="Rice", price=500, stock=50)]
    txs = [_tx("a", 10, [("1", 2, 500)])]
    expenses = [Expense(id="e", title="Rent", amount=200, timestamp=datetime(2025, 9, 1, 9), category=ExpenseCategory.RENT)]
    history = [DailyStat(date="2025-08-31", sales=500, transactions=1, customers=1)]
    m = compute_dashboard(products, txs, expenses, history, base_visits=1)
    assert m.todays_sales == 1000
    assert m.total_expenses == 200
    assert m.profit == 200
    assert m.transaction_count == 1
    assert m.customer_count == 2
    assert m.sales_growth == 100.0
    assert m.avg_billing == 1000
    assert m.to_dict()["lowStockProducts"] == []
