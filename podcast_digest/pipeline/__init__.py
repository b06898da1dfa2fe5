from .processor import EpisodeProcessor, summarize_results

__all__ = ['EpisodeProcessor', 'summarize_results']
