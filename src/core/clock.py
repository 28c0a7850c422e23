"""Business date used by status and aging logic.

Services never read the clock themselves; routers resolve "today" here and pass it down.
"""

from datetime import date


def get_today() -> date:
    """Dependency returning the current business date."""
    return date.today()
