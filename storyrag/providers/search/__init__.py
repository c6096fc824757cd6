from storyrag.providers.search.brave_search_provider import BraveSearchProvider

__all__ = ["BraveSearchProvider"]
