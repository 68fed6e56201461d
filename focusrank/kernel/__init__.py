"""Ranking kernel: lexical scoring, rank fusion, reranking and source selection."""
