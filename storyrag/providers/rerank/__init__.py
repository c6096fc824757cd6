from storyrag.providers.rerank.jina_reranker_provider import JinaRerankerProvider

__all__ = ["JinaRerankerProvider"]
