"""
focusrank - hybrid retrieval and ranking for productivity summaries

Scores, fuses, reranks and budget-selects summary chunks before they are
handed to an answer-synthesis step.
"""

__version__ = "0.1.0"
