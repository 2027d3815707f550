"""Solana keys, RPC and websocket clients, token metadata and pool swap math."""

__version__ = "0.1.0"