"""
Planning module.

Requirement calculation, monthly plans, flex adjustments, budget scheduling
and background recomputation.
"""
