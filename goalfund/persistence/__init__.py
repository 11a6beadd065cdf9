"""
Persistence module.

SQLite repository for goals, assets, allocations and their history, monthly
plans, execution records, contributions and planner settings.
"""
