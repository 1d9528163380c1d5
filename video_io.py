"""
FFmpeg-based video I/O for the LUT transformer.

Probes the input, decodes it to raw RGB24 frames and encodes processed square
frames to H.264 MP4, all through FFmpeg subprocess pipes.

Supports hardware-accelerated encoding when available (VideoToolbox on macOS,
NVENC on NVIDIA GPUs) with automatic fallback to libx264.
"""

import logging
import platform
import subprocess
from typing import List, Optional, Tuple

import numpy as np

from errors import IOFailureError, NoVideoTrackError

logger = logging.getLogger(__name__)


# Cache for detected hardware encoder
_hw_encoder_cache: Optional[str] = None
_hw_encoder_checked: bool = False

# Cache for detected hardware decoder
_hw_decoder_cache: Optional[str] = None
_hw_decoder_checked: bool = False

# Encoder priority per platform
_ENCODER_CANDIDATES = {
    "Darwin": ["h264_videotoolbox"],
    "Linux": ["h264_nvenc", "h264_vaapi"],
    "Windows": ["h264_nvenc", "h264_qsv"],
}

# Decoder acceleration priority per platform
_DECODER_CANDIDATES = {
    "Darwin": ["videotoolbox"],
    "Linux": ["cuda", "vaapi"],
    "Windows": ["cuda", "d3d11va", "qsv"],
}


def _ffmpeg_accepts(args: List[str]) -> bool:
    """Run a tiny null-source ffmpeg job; True if it succeeds."""
    cmd = ["ffmpeg", "-v", "error"] + args
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=5)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return False


def detect_hw_encoder() -> Optional[str]:
    """
    Detect available hardware encoder for H.264.

    Returns:
        Encoder name if available, None if only software encoding available
    """
    global _hw_encoder_cache, _hw_encoder_checked

    if _hw_encoder_checked:
        return _hw_encoder_cache

    _hw_encoder_checked = True

    for encoder in _ENCODER_CANDIDATES.get(platform.system(), []):
        if _ffmpeg_accepts(["-f", "lavfi", "-i", "nullsrc=s=64x64:d=1",
                            "-c:v", encoder, "-f", "null", "-"]):
            logger.info(f"Hardware encoder detected: {encoder}")
            _hw_encoder_cache = encoder
            return encoder

    logger.debug("No hardware encoder available, using libx264")
    return None


def _detect_hw_decoder() -> Optional[str]:
    """
    Detect available hardware decoder/acceleration for H.264.

    Returns:
        Hardware accelerator name if available, None if only software decoding
    """
    global _hw_decoder_cache, _hw_decoder_checked

    if _hw_decoder_checked:
        return _hw_decoder_cache

    _hw_decoder_checked = True

    for hwaccel in _DECODER_CANDIDATES.get(platform.system(), []):
        if _ffmpeg_accepts(["-hwaccel", hwaccel, "-f", "lavfi",
                            "-i", "nullsrc=s=64x64:d=1", "-f", "null", "-"]):
            logger.info(f"Hardware decoder detected: {hwaccel}")
            _hw_decoder_cache = hwaccel
            return hwaccel

    logger.debug("No hardware decoder available, using software decoding")
    return None


def get_video_info(path: str) -> Tuple[int, int, float, int]:
    """
    Get video metadata using ffprobe.

    Args:
        path: Path to video file

    Returns:
        Tuple of (width, height, fps, frame_count) in coded (unrotated) size;
        frame_count is 0 when the container does not report it

    Raises:
        IOFailureError: if ffprobe cannot read the file
        NoVideoTrackError: if the file has no video stream
    """
    cmd = [
        "ffprobe", "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height,r_frame_rate,nb_frames",
        "-of", "csv=p=0",
        path
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"ffprobe failed for {path}: {e.stderr}")
        raise IOFailureError(f"Failed to probe video: {path}", details=e.stderr) from e
    except FileNotFoundError as e:
        raise IOFailureError("ffprobe not found; install FFmpeg") from e

    output = result.stdout.strip()
    if not output:
        raise NoVideoTrackError(f"No video track found in {path}")

    parts = output.splitlines()[0].split(',')
    try:
        width = int(parts[0])
        height = int(parts[1])
        # Parse frame rate (e.g., "30000/1001" or "30")
        fps_parts = parts[2].split('/')
        fps = float(fps_parts[0]) / float(fps_parts[1]) if len(fps_parts) == 2 else float(fps_parts[0])
    except (ValueError, IndexError, ZeroDivisionError) as e:
        raise NoVideoTrackError(f"Unreadable video stream in {path}: {output!r}") from e

    # nb_frames may be N/A for some containers
    try:
        frame_count = int(parts[3]) if len(parts) > 3 and parts[3] != 'N/A' else 0
    except ValueError:
        frame_count = 0
    return width, height, fps, frame_count


def get_video_rotation(path: str) -> int:
    """
    Get the display rotation of the first video stream in degrees.

    Reads the display-matrix side data (and the legacy "rotate" tag). Returns 0
    when no rotation is recorded or ffprobe reports nothing usable.
    """
    cmd = [
        "ffprobe", "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream_tags=rotate:stream_side_data=rotation",
        "-of", "default=noprint_wrappers=1",
        path
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except (subprocess.CalledProcessError, FileNotFoundError, OSError) as e:
        logger.debug(f"Could not read rotation for {path}: {e}")
        return 0

    for line in result.stdout.splitlines():
        key, _, value = line.partition('=')
        if 'rotat' in key.lower():
            try:
                return int(float(value)) % 360
            except ValueError:
                continue
    return 0


def get_display_size(path: str) -> Tuple[int, int, float, int]:
    """
    Like get_video_info(), but width/height are swapped for 90/270 degree
    rotations, matching the frames FFmpeg decodes with autorotation.
    """
    width, height, fps, frame_count = get_video_info(path)
    if get_video_rotation(path) in (90, 270):
        width, height = height, width
    return width, height, fps, frame_count


class FFmpegReader:
    """
    Context manager for reading video frames via FFmpeg pipe.

    Decodes video to raw RGB24 frames in display orientation and provides them
    as numpy arrays.
    """

    def __init__(self, path: str):
        self.path = path
        self.process: Optional[subprocess.Popen] = None
        self.width = 0
        self.height = 0
        self.fps = 0.0
        self.frame_count = 0
        self._frame_size = 0

    def __enter__(self) -> 'FFmpegReader':
        self.width, self.height, self.fps, self.frame_count = get_display_size(self.path)
        self._frame_size = self.width * self.height * 3

        cmd = ["ffmpeg", "-v", "error"]

        # The output is transferred back to CPU for RGB conversion
        hwaccel = _detect_hw_decoder()
        if hwaccel:
            cmd.extend(["-hwaccel", hwaccel])

        cmd.extend([
            "-i", self.path,
            "-an",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-"
        ])
        self.process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=self._frame_size * 2
        )
        return self

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read the next frame.

        Returns:
            Tuple of (success, frame) where frame is RGB numpy array or None
        """
        if self.process is None or self.process.stdout is None:
            return False, None

        raw = self.process.stdout.read(self._frame_size)
        if len(raw) != self._frame_size:
            return False, None

        frame = np.frombuffer(raw, dtype=np.uint8).reshape(self.height, self.width, 3)
        return True, frame

    def __iter__(self):
        while True:
            ok, frame = self.read()
            if not ok:
                return
            yield frame

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.process:
            try:
                if self.process.stdout:
                    self.process.stdout.close()
                if self.process.stderr:
                    self.process.stderr.close()
                self.process.terminate()
                self.process.wait(timeout=5)
            except Exception as e:
                logger.warning(f"Error closing FFmpeg reader for {self.path}: {e}")
                self.process.kill()
        return False


class FFmpegWriter:
    """
    Context manager for writing video frames via FFmpeg pipe.

    Accepts RGB numpy arrays and encodes to H.264 MP4.

    Args:
        path: Output file path
        fps: Frame rate
        size: Video dimensions (width, height)
        use_hw_encoding: Try hardware encoding (default True, falls back to software)
    """

    def __init__(self, path: str, fps: float, size: Tuple[int, int],
                 use_hw_encoding: bool = True):
        self.path = path
        self.fps = fps
        self.width, self.height = size
        self.use_hw_encoding = use_hw_encoding
        self.process: Optional[subprocess.Popen] = None
        self.returncode: Optional[int] = None
        self.error_output = ""
        self._frame_count = 0
        self._aborted = False
        self._encoder_used: str = "libx264"

    def _build_encoder_args(self) -> List[str]:
        """Build encoder-specific FFmpeg arguments."""
        if self.width % 2 or self.height % 2:
            # 4:2:0 needs even sides; x264 accepts odd sides only in 4:4:4
            self._encoder_used = "libx264"
            return ["-c:v", "libx264", "-preset", "fast", "-crf", "23", "-pix_fmt", "yuv444p"]

        hw_encoder = detect_hw_encoder() if self.use_hw_encoding else None

        if hw_encoder == "h264_videotoolbox":
            self._encoder_used = hw_encoder
            return ["-c:v", "h264_videotoolbox", "-b:v", "10M", "-pix_fmt", "yuv420p"]
        elif hw_encoder in ("h264_nvenc", "h264_qsv"):
            self._encoder_used = hw_encoder
            return ["-c:v", hw_encoder, "-preset", "fast", "-b:v", "10M", "-pix_fmt", "yuv420p"]
        elif hw_encoder == "h264_vaapi":
            self._encoder_used = hw_encoder
            return ["-c:v", "h264_vaapi", "-b:v", "10M", "-pix_fmt", "vaapi_vld"]

        self._encoder_used = "libx264"
        return ["-c:v", "libx264", "-preset", "fast", "-crf", "23", "-pix_fmt", "yuv420p"]

    def __enter__(self) -> 'FFmpegWriter':
        encoder_args = self._build_encoder_args()

        cmd = [
            "ffmpeg", "-y", "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.fps),
            "-i", "-",
        ] + encoder_args + [
            "-movflags", "+faststart",
            self.path
        ]
        self.process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=self.width * self.height * 3 * 2
        )
        logger.debug(f"Opened FFmpegWriter: {self.path} (encoder: {self._encoder_used})")
        return self

    @property
    def encoder(self) -> str:
        """Return the encoder being used (e.g., 'libx264', 'h264_videotoolbox')."""
        return self._encoder_used

    @property
    def frames_written(self) -> int:
        return self._frame_count

    @property
    def succeeded(self) -> bool:
        """True once the encoder exited cleanly after close."""
        return not self._aborted and self.returncode == 0

    def write(self, frame: np.ndarray) -> None:
        """Write a frame (RGB numpy array)."""
        if self.process is None or self.process.stdin is None:
            raise RuntimeError("Writer not initialized")

        if frame.shape[:2] != (self.height, self.width):
            raise ValueError(f"Frame size mismatch: expected {self.width}x{self.height}, got {frame.shape[1]}x{frame.shape[0]}")

        self.process.stdin.write(np.ascontiguousarray(frame).tobytes())
        self._frame_count += 1

    def abort(self) -> None:
        """Stop encoding immediately; the output file is left incomplete."""
        self._aborted = True
        if self.process and self.process.poll() is None:
            logger.debug(f"Aborting FFmpegWriter: {self.path}")
            self.process.kill()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.process:
            if exc_type is not None and not self._aborted:
                self.abort()
            try:
                if self.process.stdin:
                    self.process.stdin.close()
            except OSError as e:
                # Broken pipe when the encoder already exited
                logger.debug(f"FFmpegWriter stdin close failed: {e}")
            try:
                self.returncode = self.process.wait(timeout=30)
                if self.process.stderr:
                    self.error_output = self.process.stderr.read().decode(errors="replace")
                if self.returncode != 0 and not self._aborted:
                    logger.error(f"FFmpeg writer failed: {self.error_output}")
            except subprocess.TimeoutExpired:
                logger.warning("FFmpeg writer timeout, killing process")
                self.process.kill()
                self.returncode = self.process.wait()
            logger.debug(f"Released FFmpegWriter: {self.path} ({self._frame_count} frames)")
        return False
