"""PAB bridge relayer: coordinates escrowed transfers between an EVM gateway and the XRP Ledger."""

__version__ = "0.1.0"
