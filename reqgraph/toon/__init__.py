"""Compact tabular serialization used in prompts and model responses."""

from reqgraph.toon.codec import LexerState, RowLexer, ToonCodec

__all__ = ["LexerState", "RowLexer", "ToonCodec"]
