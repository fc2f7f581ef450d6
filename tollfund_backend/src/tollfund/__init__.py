"""
TollFund backend package.

Habit and reward tracker: recurring daily tasks materialized from templates,
long-running challenges and expenses, aggregated into a running balance.
The FastAPI application is built by tollfund.main.create_app().
"""

__version__ = "0.1.0"
