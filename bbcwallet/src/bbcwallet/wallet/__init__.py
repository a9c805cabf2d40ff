"""
Wallet components: balance view, pending-spend filter, coin selection,
transaction encoding, signing and the transaction service.
"""
