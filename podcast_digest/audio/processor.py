"""Audio preparation: compress to low-bitrate mono and split into upload-sized segments"""

import asyncio
import math
import shutil
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydub.utils import mediainfo

from ..exceptions import AudioProcessingError
from ..utils.helpers import generate_correlation_id, temp_file_tag
from ..utils.logging import get_logger

logger = get_logger(__name__)

COMPRESS_TIMEOUT = 600  # seconds
SPLIT_TIMEOUT = 300
PROBE_TIMEOUT = 60
ENCODE_ARGS = ['-acodec', 'libmp3lame', '-ab', '32k', '-ar', '16000', '-ac', '1']


class AudioProcessor:
    """Prepare a local audio file for a size-limited upload endpoint"""

    def __init__(self, temp_dir: Path, max_chunk_bytes: int = 25 * 1024 * 1024):
        self.temp_dir = Path(temp_dir)
        self.max_chunk_bytes = max_chunk_bytes

    @staticmethod
    def has_ffmpeg() -> bool:
        return shutil.which('ffmpeg') is not None

    async def prepare(self, audio_file: Path, correlation_id: Optional[str] = None) -> List[Path]:
        """
        Return the files to upload, in playback order.

        Without ffmpeg the original file is passed through unchanged. Every
        returned path other than ``audio_file`` itself is owned by the caller
        and should be removed with ``cleanup``.
        """
        cid = correlation_id or generate_correlation_id()
        audio_file = Path(audio_file)

        if not self.has_ffmpeg():
            logger.warning(f"[{cid}] ffmpeg not found, uploading raw audio")
            return [audio_file]

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        compressed = await self.compress(audio_file, cid)

        size = compressed.stat().st_size
        if size <= self.max_chunk_bytes:
            return [compressed]

        duration = await self.probe_duration(compressed, cid)
        if not duration or duration <= 0:
            logger.warning(f"[{cid}] Cannot determine audio duration for splitting, returning as-is")
            return [compressed]

        try:
            return await self.split(compressed, duration, cid)
        finally:
            self._remove(compressed, cid)

    async def compress(self, audio_file: Path, cid: str) -> Path:
        """Transcode to 32 kbps / 16 kHz / mono MP3"""
        output = self.temp_dir / f"compressed_{temp_file_tag(cid)}.mp3"
        logger.info(f"[{cid}] Compressing audio: {audio_file.name}")

        cmd = ['ffmpeg', '-i', str(audio_file), *ENCODE_ARGS, str(output), '-y', '-loglevel', 'error']
        returncode, _, stderr = await self._run(cmd, COMPRESS_TIMEOUT)
        if returncode != 0 or not output.exists():
            raise AudioProcessingError(f"ffmpeg compression failed: {stderr[:500]}")

        input_size = audio_file.stat().st_size
        output_size = output.stat().st_size
        reduction = round((1 - output_size / input_size) * 100) if input_size else 0
        logger.info(
            f"[{cid}] ✅ Compressed {input_size / 1024 / 1024:.1f} MB -> "
            f"{output_size / 1024 / 1024:.1f} MB ({reduction}% smaller)"
        )
        return output

    def plan_segments(self, file_size: int, duration: float) -> List[Tuple[int, Optional[int]]]:
        """(start, length) pairs in seconds; the last segment runs to the end (length None)"""
        num_segments = math.ceil(file_size / self.max_chunk_bytes)
        segment_duration = math.floor(duration / num_segments)
        plan = []
        for i in range(num_segments):
            length = segment_duration if i < num_segments - 1 else None
            plan.append((i * segment_duration, length))
        return plan

    async def split(self, audio_file: Path, duration: float, cid: str) -> List[Path]:
        plan = self.plan_segments(audio_file.stat().st_size, duration)
        logger.info(f"[{cid}] Splitting audio into {len(plan)} segments ({duration / 60:.1f} min total)")

        segments = []
        tag = temp_file_tag(cid)
        for index, (start, length) in enumerate(plan):
            output = self.temp_dir / f"chunk_{index}_{tag}.mp3"
            cmd = ['ffmpeg', '-i', str(audio_file), '-ss', str(start)]
            if length is not None:
                cmd += ['-t', str(length)]
            cmd += [*ENCODE_ARGS, str(output), '-y', '-loglevel', 'error']

            try:
                returncode, _, stderr = await self._run(cmd, SPLIT_TIMEOUT)
            except AudioProcessingError:
                self.cleanup(segments)
                raise
            if returncode != 0 or not output.exists() or output.stat().st_size == 0:
                self.cleanup(segments + [output])
                raise AudioProcessingError(f"ffmpeg failed to extract segment {index + 1}: {stderr[:500]}")

            segments.append(output)
            logger.info(f"[{cid}] ✅ Created segment {index + 1}: {output.stat().st_size / 1024 / 1024:.1f} MB")

        return segments

    async def probe_duration(self, audio_file: Path, cid: str) -> Optional[float]:
        """Duration in seconds, or None when it cannot be determined"""
        if shutil.which('ffprobe'):
            cmd = ['ffprobe', '-v', 'error', '-show_entries', 'format=duration',
                   '-of', 'default=noprint_wrappers=1:nokey=1', str(audio_file)]
            try:
                returncode, stdout, stderr = await self._run(cmd, PROBE_TIMEOUT)
            except AudioProcessingError as e:
                logger.warning(f"[{cid}] ffprobe failed: {e}")
                return None
            if returncode != 0:
                logger.warning(f"[{cid}] ffprobe error: {stderr[:200]}")
                return None
            try:
                return float(stdout.strip())
            except ValueError:
                return None

        # pydub shells out to whichever probe binary it can find
        try:
            info = await asyncio.to_thread(mediainfo, str(audio_file))
            return float(info.get('duration', 0)) or None
        except (OSError, ValueError) as e:
            logger.warning(f"[{cid}] Failed to get audio duration: {e}")
            return None

    async def _run(self, cmd: List[str], timeout: float) -> Tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise AudioProcessingError(f"{cmd[0]} timed out after {timeout}s")
        return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')

    def cleanup(self, files: Iterable[Path], keep: Optional[Path] = None):
        """Delete prepared files, leaving ``keep`` (usually the source file) alone"""
        for path in files:
            if keep is not None and Path(path) == Path(keep):
                continue
            self._remove(Path(path))

    @staticmethod
    def _remove(path: Path, cid: str = ''):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[{cid}] Could not delete {path}: {e}")
