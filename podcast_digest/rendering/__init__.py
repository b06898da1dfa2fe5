from .markdown import EpisodeMeta, MarkdownRenderer, generate_markdown, save_markdown

__all__ = ['EpisodeMeta', 'MarkdownRenderer', 'generate_markdown', 'save_markdown']
