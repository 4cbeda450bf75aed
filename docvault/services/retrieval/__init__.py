"""Document retrieval: faceted, semantic and combined search."""

from docvault.services.retrieval.retriever import Retriever, order_scored_first

__all__ = ["Retriever", "order_scored_first"]
