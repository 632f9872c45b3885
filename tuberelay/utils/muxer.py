"""
Video + audio remuxing with FFmpeg.
"""
from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

from tuberelay.errors import MergeFailed
from tuberelay.utils.logger import logger


class MediaMuxer:
    """Merges a video-only file with an audio-only file.

    The video track is copied verbatim; only the audio track is re-encoded
    (AAC for MP4 output, Opus for WebM). Output stops at the shorter input.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", audio_bitrate: str = "192k"):
        self.ffmpeg_path = ffmpeg_path
        self.audio_bitrate = audio_bitrate

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    def build_command(self, video_path: Path, audio_path: Path, output_path: Path) -> list[str]:
        output_ext = Path(output_path).suffix.lower()
        cmd = [
            self.ffmpeg_path, "-y",
            "-v", "error",
            "-i", str(video_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
        ]
        if output_ext == ".webm":
            # WebM only takes Vorbis/Opus audio
            cmd += ["-c:a", "libopus", "-b:a", self.audio_bitrate]
        else:
            cmd += ["-c:a", "aac", "-b:a", self.audio_bitrate, "-movflags", "+faststart"]
        cmd += ["-shortest", str(output_path)]
        return cmd

    async def merge(self, video_path: Path, audio_path: Path, output_path: Path) -> Path:
        """Run ffmpeg; raises MergeFailed on any failure."""
        video_path, audio_path, output_path = Path(video_path), Path(audio_path), Path(output_path)

        if not video_path.exists() or video_path.stat().st_size == 0:
            raise MergeFailed(f"Video file is missing or empty: {video_path.name}")
        if not audio_path.exists() or audio_path.stat().st_size == 0:
            raise MergeFailed(f"Audio file is missing or empty: {audio_path.name}")

        cmd = self.build_command(video_path, audio_path, output_path)
        logger.info("Merging video and audio with FFmpeg...")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise MergeFailed("FFmpeg not found. Please install FFmpeg and add it to your PATH.") from None
        except OSError as e:
            raise MergeFailed(f"Failed to start FFmpeg: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            logger.warning("FFmpeg merge cancelled")
            raise

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="ignore").strip()
            logger.error(f"FFmpeg failed ({process.returncode}): {message}")
            raise MergeFailed(f"FFmpeg failed: {message or f'exit code {process.returncode}'}")

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise MergeFailed("FFmpeg produced an empty file")

        logger.info("FFmpeg processing finished")
        return output_path
