"""RLUSD toolkit: wallets, trustlines and token payments on the XRP Ledger"""

__version__ = "1.0.0"
