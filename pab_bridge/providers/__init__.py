from .base import GatewayContract, Provider, TxReceipt, XrplLedger, XrplTransaction

__all__ = [
    "Provider",
    "GatewayContract",
    "XrplLedger",
    "TxReceipt",
    "XrplTransaction",
]
