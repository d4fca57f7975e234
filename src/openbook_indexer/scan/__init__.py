"""Market discovery - enumerate and index program market accounts."""

from openbook_indexer.scan.market_scanner import MarketScanner, ScanResult

__all__ = ["MarketScanner", "ScanResult"]
