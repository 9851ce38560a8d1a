"""
RiddleBridge - Cross-Chain Bridge Transaction Pipeline

Moves value for a user from a token on one chain to a token on another
through platform custodial wallets: quote, deposit verification, payout
and restart of failed payouts.
"""

__version__ = "1.0.0"
