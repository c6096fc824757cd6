from storyrag.services.search.hybrid_search import HybridSearchEngine, reciprocal_rank_fusion

__all__ = ["HybridSearchEngine", "reciprocal_rank_fusion"]
