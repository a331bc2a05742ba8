import logging
from datetime import date, timedelta
from typing import Optional

from models.ledger import DailyStat
from models.metrics import today_stat
from models.state import AppState

LOG = logging.getLogger(__name__)


def close_day(state: AppState, day: Optional[date] = None) -> DailyStat:
    """Move today's activity into history and start a fresh day.

    An existing history entry for the same date is replaced, so closing a day
    twice does not double count it.
    """
    stat = today_stat(state.transactions, state.base_visits, day)
    state.history = [h for h in state.history if h.date != stat.date] + [stat]
    state.transactions = []
    state.expenses = []
    state.base_visits = 0
    LOG.info("Closed %s: sales=%s transactions=%d customers=%d", stat.date, stat.sales, stat.transactions, stat.customers)
    return stat


def close_previous_day(state: AppState, today: Optional[date] = None) -> DailyStat:
    """Nightly job entry: the ledger being closed belongs to the day before `today`."""
    today = today or date.today()
    return close_day(state, today - timedelta(days=1))
