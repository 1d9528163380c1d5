"""
Video transform orchestration.

Wires the LUT engine and crop geometry into an FFmpeg decode -> crop/flip ->
LUT -> encode pipeline running on a worker thread, and reports progress,
completion and errors through callbacks or an event stream.

Each export is represented by an ExportHandle returned from transform(); the
handle is what callers use to cancel. A transformer runs one export at a time:
starting a new one cancels the previous one first.
"""

import logging
import os
import tempfile
import threading
import time
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from queue import Empty, Queue
from typing import Any, Callable, Dict, Iterator, Optional, Union

from assets import AssetResolver
from color_grading import LutGrader, prepare_lut
from config import LutOptions, TransformRequest
from constants import (
    CANCEL_TIMEOUT_S,
    ESTIMATED_PROGRESS_DURATION_S,
    ESTIMATED_PROGRESS_END,
    ESTIMATED_PROGRESS_START,
    OUTPUT_EXTENSION,
    OUTPUT_PREFIX,
    PROGRESS_CAP,
    PROGRESS_UPDATE_INTERVAL_S,
    SETUP_PROGRESS,
)
from crop_geometry import CropGeometry, compute_crop_geometry, crop_frame
from errors import (
    ExportCancelledError,
    ExportFailedError,
    InvalidArgumentError,
    TransformError,
)
from video_io import FFmpegReader, FFmpegWriter, get_display_size

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
CompletedCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str, Optional[Any]], None]


class ExportStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExportHandle:
    """
    Token for one export started by VideoTransformer.transform().

    Usage:
        handle = transformer.transform(request, on_progress, on_completed, on_error)
        handle.cancel()
        handle.wait(timeout=5)
    """

    def __init__(self, request: TransformRequest, output_path: str):
        self.id = uuid.uuid4().hex
        self.request = request
        self.output_path = output_path
        self.status = ExportStatus.PENDING
        self.error: Optional[TransformError] = None
        self.output_opened = False
        self._cancel_requested = threading.Event()
        self._done = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; the worker acknowledges by finishing the handle."""
        self._cancel_requested.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the export finished; False if the timeout elapsed first."""
        return self._done.wait(timeout)

    def _finish(self, status: ExportStatus, error: Optional[TransformError] = None) -> None:
        self.status = status
        self.error = error
        self._done.set()

    def __repr__(self) -> str:
        return f"ExportHandle(id={self.id[:8]}, status={self.status.value})"


class ProgressEstimator:
    """
    Time-based progress for exports whose frame count is unknown.

    Rises linearly from start to end over duration seconds and then holds at
    end, which stays below 1.0 until the encoder reports completion.
    """

    def __init__(self, start: float = ESTIMATED_PROGRESS_START,
                 end: float = ESTIMATED_PROGRESS_END,
                 duration: float = ESTIMATED_PROGRESS_DURATION_S,
                 clock: Callable[[], float] = time.monotonic):
        self.start = start
        self.end = end
        self.duration = duration
        self._clock = clock
        self._started_at = clock()

    def estimate(self) -> float:
        elapsed = self._clock() - self._started_at
        if self.duration <= 0:
            return self.end
        fraction = min(max(elapsed / self.duration, 0.0), 1.0)
        return self.start + (self.end - self.start) * fraction


class ProgressTracker:
    """
    Converts processed frames into throttled 0..1 progress notifications.

    Uses frame counts when the total is known, otherwise a ProgressEstimator.
    Never reports 1.0; completion is reported separately.
    """

    def __init__(self, notify: ProgressCallback, total_frames: int = 0,
                 interval: float = PROGRESS_UPDATE_INTERVAL_S,
                 clock: Callable[[], float] = time.monotonic):
        self.notify = notify
        self.total_frames = total_frames
        self.interval = interval
        self._clock = clock
        self._estimator = ProgressEstimator(clock=clock) if total_frames <= 0 else None
        self._last_reported_at: Optional[float] = None
        self.last_progress = SETUP_PROGRESS

    def fraction(self, frames_done: int) -> float:
        if self._estimator is not None:
            return self._estimator.estimate()
        done = min(frames_done / self.total_frames, 1.0)
        return min(SETUP_PROGRESS + (PROGRESS_CAP - SETUP_PROGRESS) * done, PROGRESS_CAP)

    def update(self, frames_done: int) -> None:
        now = self._clock()
        if self._last_reported_at is not None and now - self._last_reported_at < self.interval:
            return
        progress = self.fraction(frames_done)
        if progress <= self.last_progress and self._last_reported_at is not None:
            return
        self._last_reported_at = now
        self.last_progress = progress
        self.notify(progress)


def _log_callback_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error(f"Transform callback raised: {error!r}")


class VideoTransformer:
    """
    Applies a .cube LUT and a square crop/flip to videos.

    Usage:
        with VideoTransformer(AssetResolver(["assets"])) as transformer:
            handle = transformer.transform(request, on_progress, on_completed, on_error)
            handle.wait()
    """

    def __init__(self, assets: Optional[AssetResolver] = None,
                 options: Optional[LutOptions] = None,
                 output_dir: Optional[str] = None,
                 use_hw_encoding: bool = True,
                 cancel_timeout: float = CANCEL_TIMEOUT_S):
        """
        Initialize the transformer.

        Args:
            assets: Resolver for LUT asset keys (defaults to the working directory)
            options: LUT intensity/packing configuration
            output_dir: Directory for generated output files (defaults to the temp dir)
            use_hw_encoding: Try hardware H.264 encoders first
            cancel_timeout: Max seconds to wait for a previous export to stop
        """
        self.assets = assets or AssetResolver()
        self.options = options or LutOptions()
        self.output_dir = output_dir or tempfile.gettempdir()
        self.use_hw_encoding = use_hw_encoding
        self.cancel_timeout = cancel_timeout
        self._lock = threading.Lock()
        self._current: Optional[ExportHandle] = None
        # Single worker keeps notifications ordered without blocking the pipeline
        self._dispatcher = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transform-events")

    def transform(self, request: Union[TransformRequest, Dict[str, Any]],
                  on_progress: Optional[ProgressCallback] = None,
                  on_completed: Optional[CompletedCallback] = None,
                  on_error: Optional[ErrorCallback] = None) -> ExportHandle:
        """
        Start an export in the background.

        Any export still running on this transformer is cancelled first, and
        this call waits (up to cancel_timeout) for it to stop.

        Args:
            request: TransformRequest or channel-style argument dict
            on_progress: Called with progress in [0, 1]
            on_completed: Called with the output path on success
            on_error: Called with (code, message, details) on failure or cancellation

        Returns:
            ExportHandle for waiting on or cancelling the export

        Raises:
            InvalidArgumentError: if a dict request fails validation
        """
        if not isinstance(request, TransformRequest):
            request = TransformRequest.from_arguments(request)

        with self._lock:
            previous = self._current
            if previous is not None and not previous.done:
                logger.info(f"Cancelling current export {previous.id[:8]} before starting a new one")
                previous.cancel()
                if not previous.wait(self.cancel_timeout):
                    logger.warning(
                        f"Export {previous.id[:8]} did not stop within {self.cancel_timeout:.1f}s"
                    )

            handle = ExportHandle(request, self._output_path_for(request))
            self._current = handle

        worker = threading.Thread(
            target=self._run,
            args=(handle, on_progress, on_completed, on_error),
            name=f"export-{handle.id[:8]}",
            daemon=True,
        )
        worker.start()
        return handle

    def cancel(self, handle: Optional[ExportHandle] = None) -> bool:
        """
        Request cancellation of an export (the current one when handle is None).

        Returns:
            True if a running export was asked to stop
        """
        handle = handle or self._current
        if handle is None or handle.done:
            logger.debug("No active export to cancel")
            return False
        logger.info(f"Cancelling export {handle.id[:8]}")
        handle.cancel()
        return True

    def close(self) -> None:
        """Cancel the running export and stop the notification dispatcher."""
        current = self._current
        if current is not None and not current.done:
            current.cancel()
            current.wait(self.cancel_timeout)
        self._dispatcher.shutdown(wait=True)

    def __enter__(self) -> 'VideoTransformer':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _output_path_for(self, request: TransformRequest) -> str:
        if request.output_path:
            return os.path.abspath(request.output_path)
        name = f"{OUTPUT_PREFIX}{uuid.uuid4()}{OUTPUT_EXTENSION}"
        return os.path.join(self.output_dir, name)

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            future = self._dispatcher.submit(callback, *args)
        except RuntimeError:
            # Dispatcher already shut down by close()
            logger.warning(f"Dropped transform notification after close: {callback!r}{args!r}")
            return
        future.add_done_callback(_log_callback_failure)

    def _load_grader(self, request: TransformRequest) -> LutGrader:
        if not request.lut_asset:
            return LutGrader(None)
        text = self.assets.read_text(request.lut_asset)
        packed = prepare_lut(text, request.intensity, self.options, source=request.lut_asset)
        return LutGrader(packed)

    @staticmethod
    def _check_cancelled(handle: ExportHandle) -> None:
        if handle.cancel_requested:
            raise ExportCancelledError("Export was cancelled")

    def _prepare(self, handle: ExportHandle):
        """LUT and geometry setup; runs before any encoder is started."""
        request = handle.request
        grader = self._load_grader(request)
        self._check_cancelled(handle)

        width, height, fps, frame_count = get_display_size(request.input_path)
        geometry = compute_crop_geometry(
            width, height, request.crop_square_size, request.flip_horizontally
        )
        if geometry.side > min(width, height):
            raise InvalidArgumentError(
                f"Crop size {geometry.side} exceeds source size {width}x{height}"
            )
        return grader, geometry, fps, frame_count

    def _export(self, handle: ExportHandle, grader: LutGrader, geometry: CropGeometry,
                fps: float, tracker: ProgressTracker) -> int:
        output_dir = os.path.dirname(handle.output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        frames_done = 0
        with FFmpegReader(handle.request.input_path) as reader:
            # From here on the encoder may truncate or create the output file
            handle.output_opened = True
            with FFmpegWriter(handle.output_path, fps, geometry.render_size,
                              use_hw_encoding=self.use_hw_encoding) as writer:
                for frame in reader:
                    if handle.cancel_requested:
                        writer.abort()
                        raise ExportCancelledError("Export was cancelled")

                    square = grader.grade(crop_frame(frame, geometry))
                    try:
                        writer.write(square)
                    except BrokenPipeError as e:
                        raise ExportFailedError("Encoder stopped accepting frames") from e
                    frames_done += 1
                    tracker.update(frames_done)

        if frames_done == 0:
            raise ExportFailedError(f"No frames decoded from {handle.request.input_path}")
        if not writer.succeeded:
            raise ExportFailedError(
                f"Encoder exited with status {writer.returncode}",
                details=writer.error_output or None,
            )
        logger.debug(f"Encoded {frames_done} frames with {writer.encoder}")
        return frames_done

    def _discard_output(self, handle: ExportHandle) -> None:
        if not handle.output_opened:
            return
        try:
            os.remove(handle.output_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial output {handle.output_path}: {e}")

    def _run(self, handle: ExportHandle, on_progress: Optional[ProgressCallback],
             on_completed: Optional[CompletedCallback],
             on_error: Optional[ErrorCallback]) -> None:
        request = handle.request
        handle.status = ExportStatus.IN_PROGRESS
        started = time.monotonic()
        logger.debug(
            f"Export {handle.id[:8]}: '{request.input_path}' with LUT '{request.lut_asset}'"
        )

        try:
            self._notify(on_progress, 0.0)
            grader, geometry, fps, frame_count = self._prepare(handle)
            self._check_cancelled(handle)

            self._notify(on_progress, SETUP_PROGRESS)
            tracker = ProgressTracker(
                lambda progress: self._notify(on_progress, progress), frame_count
            )
            frames = self._export(handle, grader, geometry, fps, tracker)

        except ExportCancelledError as e:
            logger.info(f"Export {handle.id[:8]} cancelled")
            self._discard_output(handle)
            self._notify(on_error, e.code, e.message, None)
            handle._finish(ExportStatus.CANCELLED, e)
            return
        except TransformError as e:
            logger.error(f"Export {handle.id[:8]} failed: [{e.code}] {e.message}")
            self._discard_output(handle)
            self._notify(on_error, e.code, e.message, e.details or traceback.format_exc())
            handle._finish(ExportStatus.FAILED, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error during export {handle.id[:8]}")
            self._discard_output(handle)
            error = ExportFailedError(str(e) or e.__class__.__name__, details=traceback.format_exc())
            self._notify(on_error, error.code, error.message, error.details)
            handle._finish(ExportStatus.FAILED, error)
            return

        logger.info(
            f"Export {handle.id[:8]} completed: {handle.output_path} "
            f"({frames} frames in {time.monotonic() - started:.1f}s)"
        )
        self._notify(on_progress, 1.0)
        self._notify(on_completed, handle.output_path)
        handle._finish(ExportStatus.COMPLETED)


# =============================================================================
# Event stream
# =============================================================================

@dataclass(frozen=True)
class ProgressEvent:
    progress: float
    output_path: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.output_path is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.output_path is None:
            return {"progress": self.progress}
        return {"progress": self.progress, "outputPath": self.output_path}


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str
    details: Optional[Any] = None

    @property
    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


TransformEvent = Union[ProgressEvent, ErrorEvent]


def iter_transform_events(transformer: VideoTransformer,
                          request: Union[TransformRequest, Dict[str, Any]],
                          timeout: Optional[float] = None) -> Iterator[TransformEvent]:
    """
    Run an export and yield its events.

    Yields ProgressEvent items and ends with either ProgressEvent(1.0,
    output_path) or an ErrorEvent. Closing the iterator early cancels the
    export.

    Args:
        transformer: Transformer to run the export on
        request: TransformRequest or channel-style argument dict
        timeout: Max seconds to wait for each event (None waits forever)

    Raises:
        InvalidArgumentError: if a dict request fails validation
        ExportFailedError: if no event arrives within timeout
    """
    events: Queue = Queue()

    def put_progress(progress: float) -> None:
        # Completion arrives as ProgressEvent(1.0, output_path)
        if progress < 1.0:
            events.put(ProgressEvent(progress))

    handle = transformer.transform(
        request,
        on_progress=put_progress,
        on_completed=lambda path: events.put(ProgressEvent(1.0, output_path=path)),
        on_error=lambda code, message, details: events.put(ErrorEvent(code, message, details)),
    )

    finished = False
    try:
        while not finished:
            try:
                event = events.get(timeout=timeout)
            except Empty:
                raise ExportFailedError(f"No transform event within {timeout}s") from None
            finished = event.is_terminal
            yield event
    finally:
        if not finished:
            transformer.cancel(handle)
