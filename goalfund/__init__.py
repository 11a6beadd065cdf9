"""
goalfund - Savings Goal Allocation and Monthly Planning Engine

Funds multiple savings goals from a shared pool of assets: apportions asset
balances across goals, derives monthly contribution requirements, lets the
user flex/protect/skip goals when funds are short, turns a single monthly
budget into a feasible schedule and tracks execution of a committed monthly
plan with a bounded undo window.
"""

__version__ = "0.1.0"
__author__ = "goalfund Team"
