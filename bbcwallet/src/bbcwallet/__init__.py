"""
bbcwallet - Transaction construction and signing core for BigBang wallets
"""

__version__ = "0.1.0"
