"""Per-attempt request strategies (header rotation, back-off, retry budget)."""

from .chain import AntiBotChain, FetchContext, RequestDirective, Strategy
from .strategies import build_chain

__all__ = ["AntiBotChain", "FetchContext", "RequestDirective", "Strategy", "build_chain"]
