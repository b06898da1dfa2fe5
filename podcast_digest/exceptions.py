"""Exception hierarchy for the episode pipeline"""


class PodcastDigestError(Exception):
    """Base class for pipeline errors"""


class AudioDownloadError(PodcastDigestError):
    """Audio could not be downloaded"""


class AudioProcessingError(PodcastDigestError):
    """ffmpeg/ffprobe failed on a local file"""


class TranscriptionError(PodcastDigestError):
    """Remote transcription failed"""


class TranscriptionTaskFailed(TranscriptionError):
    """An asynchronous transcription job reached FAILED"""

    FETCH_FAILURE_MARKERS = ('download', 'fetch', 'file_url', 'filedownload')

    def __init__(self, code: str, message: str, task_id: str = None):
        self.code = code or ''
        self.message = message or ''
        self.task_id = task_id
        super().__init__(f"Transcription task failed: {self.code} {self.message} (taskId: {task_id})")

    @property
    def is_fetch_failure(self) -> bool:
        """True when the remote side could not retrieve the source media"""
        haystack = f"{self.code} {self.message}".lower()
        return any(marker in haystack for marker in self.FETCH_FAILURE_MARKERS)


class TranscriptionTimeout(TranscriptionError):
    """Polling exceeded its ceiling"""


class AnalysisError(PodcastDigestError):
    """The analysis model produced no usable output"""
