from .downloader import AudioDownloader
from .processor import AudioProcessor

__all__ = ['AudioDownloader', 'AudioProcessor']
