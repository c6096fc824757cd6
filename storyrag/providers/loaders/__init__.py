from storyrag.providers.loaders.file_loader import FileLoader, content_type_for_path
from storyrag.providers.loaders.url_loader import UrlLoader

__all__ = ["FileLoader", "UrlLoader", "content_type_for_path"]
