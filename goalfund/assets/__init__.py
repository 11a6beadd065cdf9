"""
Asset balance module.

Assets combine a user-entered balance with an externally supplied on-chain
balance.
"""
