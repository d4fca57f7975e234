"""OpenBook v2 indexer - market, order and trade state from Solana."""

__version__ = "0.1.0"
