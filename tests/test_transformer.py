"""
Tests for the export orchestrator.

FFmpeg is replaced by in-memory fakes patched into the transformer module, so
these tests exercise LUT loading, geometry, progress, cancellation and error
reporting without spawning processes.
"""

import pytest
import threading
import time
from unittest.mock import patch
import numpy as np

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from assets import AssetResolver
from config import LutOptions, TransformRequest
from constants import OUTPUT_EXTENSION, OUTPUT_PREFIX, PROGRESS_CAP, SETUP_PROGRESS
from errors import InvalidArgumentError, NoVideoTrackError
from transformer import (
    ErrorEvent,
    ExportHandle,
    ExportStatus,
    ProgressEstimator,
    ProgressEvent,
    ProgressTracker,
    VideoTransformer,
    iter_transform_events,
)

SOURCE_SIZE = (64, 48)


class FakeReader:
    """Stands in for FFmpegReader: yields prepared frames."""

    def __init__(self, frames, delay=0.0, error=None):
        self.frames = frames
        self.delay = delay
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def __iter__(self):
        for frame in self.frames:
            if self.delay:
                time.sleep(self.delay)
            yield frame
        if self.error is not None:
            raise self.error


class FakeWriter:
    """Stands in for FFmpegWriter: records frames and creates the output file."""

    def __init__(self, path, fps, size, use_hw_encoding=True, returncode=0):
        self.path = path
        self.fps = fps
        self.size = size
        self.use_hw_encoding = use_hw_encoding
        self.frames = []
        self.aborted = False
        self.returncode = None
        self._final_returncode = returncode
        self.error_output = ""
        self.encoder = "fake"

    def __enter__(self):
        with open(self.path, "wb") as f:
            f.write(b"partial")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.returncode = self._final_returncode
        if self.returncode != 0:
            self.error_output = "encoder failed"
        return False

    @property
    def succeeded(self):
        return not self.aborted and self.returncode == 0

    def write(self, frame):
        self.frames.append(frame.copy())

    def abort(self):
        self.aborted = True


class Pipeline:
    """Configures the fakes used by one test."""

    def __init__(self, frame):
        self.frame = frame
        self.frame_count = 5
        self.delay = 0.0
        self.reader_error = None
        self.writer_returncode = 0
        self.readers = []
        self.writers = []
        self.probe_error = None

    def probe(self, path):
        if self.probe_error is not None:
            raise self.probe_error
        return SOURCE_SIZE[0], SOURCE_SIZE[1], 30.0, self.frame_count

    def make_reader(self, path):
        reader = FakeReader([self.frame] * self.frame_count, self.delay, self.reader_error)
        self.readers.append(reader)
        return reader

    def make_writer(self, path, fps, size, use_hw_encoding=True):
        writer = FakeWriter(path, fps, size, use_hw_encoding, self.writer_returncode)
        self.writers.append(writer)
        return writer


@pytest.fixture
def pipeline(gradient_frame):
    fakes = Pipeline(gradient_frame)
    with patch('transformer.get_display_size', side_effect=lambda path: fakes.probe(path)), \
            patch('transformer.FFmpegReader', side_effect=fakes.make_reader), \
            patch('transformer.FFmpegWriter', side_effect=fakes.make_writer):
        yield fakes


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "exports"


@pytest.fixture
def transformer(asset_dir, output_dir):
    instance = VideoTransformer(AssetResolver([asset_dir]), output_dir=str(output_dir))
    yield instance
    instance.close()


def run_events(transformer, request):
    return list(iter_transform_events(transformer, request, timeout=10))


class Recorder:
    """Collects callback invocations from the dispatcher thread."""

    def __init__(self):
        self.progress = []
        self.completed = []
        self.errors = []
        self.finished = threading.Event()

    def on_progress(self, value):
        self.progress.append(value)

    def on_completed(self, path):
        self.completed.append(path)
        self.finished.set()

    def on_error(self, code, message, details):
        self.errors.append((code, message, details))
        self.finished.set()


class TestSuccessfulExport:
    """Tests for exports that complete."""

    def test_events_end_with_output_path(self, transformer, pipeline, output_dir):
        events = run_events(transformer, {"inputPath": "in.mp4"})

        assert events[0] == ProgressEvent(0.0)
        assert events[1] == ProgressEvent(SETUP_PROGRESS)
        final = events[-1]
        assert final.progress == 1.0
        assert os.path.dirname(final.output_path) == str(output_dir)
        name = os.path.basename(final.output_path)
        assert name.startswith(OUTPUT_PREFIX) and name.endswith(OUTPUT_EXTENSION)
        assert os.path.exists(final.output_path)

    def test_progress_is_monotonic_and_capped(self, transformer, pipeline):
        events = run_events(transformer, {"inputPath": "in.mp4"})
        values = [e.progress for e in events]

        assert values == sorted(values)
        assert all(v <= PROGRESS_CAP for v in values[:-1])
        assert values.count(1.0) == 1
        assert events[-1].is_terminal
        assert all(isinstance(e, ProgressEvent) for e in events)

    def test_frames_are_cropped_to_center_square(self, transformer, pipeline, gradient_frame):
        run_events(transformer, {"inputPath": "in.mp4"})

        writer = pipeline.writers[0]
        assert writer.size == (48, 48)
        assert len(writer.frames) == pipeline.frame_count
        np.testing.assert_array_equal(writer.frames[0], gradient_frame[:, 8:56])

    def test_flip_and_crop_size(self, transformer, pipeline, gradient_frame):
        run_events(transformer, {"inputPath": "in.mp4", "flipHorizontally": True,
                                 "cropSquareSize": 20})

        writer = pipeline.writers[0]
        assert writer.size == (20, 20)
        np.testing.assert_array_equal(writer.frames[0], gradient_frame[14:34, 22:42][:, ::-1])

    def test_identity_lut_keeps_pixels(self, transformer, pipeline, gradient_frame):
        run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/scenario.cube"})

        np.testing.assert_array_equal(pipeline.writers[0].frames[0], gradient_frame[:, 8:56])

    def test_lut_is_applied(self, transformer, pipeline):
        pipeline.frame = np.zeros((48, 64, 3), dtype=np.uint8)
        pipeline.frame[..., 2] = 255

        run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/marker.cube"})

        assert np.all(pipeline.writers[0].frames[0] == 255)

    def test_zero_intensity_leaves_colors(self, transformer, pipeline):
        pipeline.frame = np.zeros((48, 64, 3), dtype=np.uint8)
        pipeline.frame[..., 2] = 255

        run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/marker.cube",
                                 "intensity": 0.0})

        np.testing.assert_array_equal(pipeline.writers[0].frames[0][0, 0], [0, 0, 255])

    def test_explicit_output_path(self, transformer, pipeline, tmp_path):
        target = tmp_path / "nested" / "out.mp4"
        events = run_events(transformer, {"inputPath": "in.mp4", "outputPath": str(target)})

        assert events[-1].output_path == str(target)
        assert target.exists()

    def test_hw_encoding_flag_forwarded(self, asset_dir, pipeline, output_dir):
        with VideoTransformer(AssetResolver([asset_dir]), output_dir=str(output_dir),
                              use_hw_encoding=False) as instance:
            run_events(instance, {"inputPath": "in.mp4"})

        assert pipeline.writers[0].use_hw_encoding is False

    def test_unknown_frame_count_still_completes(self, transformer, pipeline):
        pipeline.probe = lambda path: (64, 48, 30.0, 0)

        events = run_events(transformer, {"inputPath": "in.mp4"})

        assert events[-1].output_path is not None

    def test_callbacks_and_handle(self, transformer, pipeline):
        recorder = Recorder()
        handle = transformer.transform(
            TransformRequest(input_path="in.mp4"),
            recorder.on_progress, recorder.on_completed, recorder.on_error,
        )

        assert handle.wait(10)
        assert recorder.finished.wait(10)
        assert handle.status is ExportStatus.COMPLETED
        assert handle.error is None
        assert recorder.completed == [handle.output_path]
        assert recorder.progress[-1] == 1.0
        assert recorder.errors == []

    def test_failing_callback_does_not_stop_export(self, transformer, pipeline):
        recorder = Recorder()

        def broken_progress(value):
            raise RuntimeError("listener went away")

        handle = transformer.transform(
            {"inputPath": "in.mp4"}, broken_progress, recorder.on_completed, recorder.on_error,
        )

        assert recorder.finished.wait(10)
        assert recorder.completed == [handle.output_path]


class TestExportErrors:
    """Tests for failures reported through the event stream."""

    def test_invalid_request_raises_synchronously(self, transformer, pipeline):
        with pytest.raises(InvalidArgumentError):
            transformer.transform({"inputPath": "in.mp4", "intensity": 2.0})
        assert pipeline.readers == []

    def test_missing_asset(self, transformer, pipeline):
        events = run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/none.cube"})

        error = events[-1]
        assert isinstance(error, ErrorEvent)
        assert error.code == "ASSET_NOT_FOUND"
        assert pipeline.writers == []

    def test_bad_lut_reported_before_export(self, transformer, pipeline, asset_dir):
        (asset_dir / "luts" / "short.cube").write_text("LUT_3D_SIZE 2\n0 0 0\n1 1 1\n")

        events = run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/short.cube"})

        assert events[-1].code == "SAMPLE_COUNT_MISMATCH"
        assert "expected 24, got 6" in events[-1].message
        assert pipeline.readers == []
        assert pipeline.writers == []

    def test_intensity_while_disabled(self, asset_dir, pipeline, output_dir):
        with VideoTransformer(AssetResolver([asset_dir]), output_dir=str(output_dir),
                              options=LutOptions(intensity_enabled=False)) as instance:
            events = run_events(instance, {"inputPath": "in.mp4",
                                           "lutAsset": "luts/marker.cube", "intensity": 0.5})

        assert events[-1].code == "INVALID_ARGUMENT"
        assert pipeline.writers == []

    def test_crop_larger_than_source(self, transformer, pipeline):
        events = run_events(transformer, {"inputPath": "in.mp4", "cropSquareSize": 100})

        assert events[-1].code == "INVALID_ARGUMENT"
        assert "exceeds" in events[-1].message
        assert pipeline.writers == []

    def test_no_video_track(self, transformer, pipeline):
        pipeline.probe_error = NoVideoTrackError("No video track found in in.mp4")

        events = run_events(transformer, {"inputPath": "in.mp4"})

        assert events[-1].code == "NO_VIDEO_TRACK"
        assert events[-1].details

    def test_existing_output_kept_when_asset_missing(self, transformer, pipeline, tmp_path):
        target = tmp_path / "keep.mp4"
        target.write_bytes(b"earlier export")

        events = run_events(transformer, {"inputPath": "in.mp4", "lutAsset": "luts/none.cube",
                                          "outputPath": str(target)})

        assert events[-1].code == "ASSET_NOT_FOUND"
        assert target.read_bytes() == b"earlier export"

    def test_existing_output_kept_when_probe_fails(self, transformer, pipeline, tmp_path):
        target = tmp_path / "keep.mp4"
        target.write_bytes(b"earlier export")
        pipeline.probe_error = NoVideoTrackError("No video track found in in.mp4")

        events = run_events(transformer, {"inputPath": "in.mp4", "outputPath": str(target)})

        assert events[-1].code == "NO_VIDEO_TRACK"
        assert target.exists()

    def test_encoder_failure_removes_output(self, transformer, pipeline, output_dir):
        pipeline.writer_returncode = 1

        events = run_events(transformer, {"inputPath": "in.mp4"})

        assert events[-1].code == "EXPORT_FAILED"
        assert events[-1].details == "encoder failed"
        assert not os.path.exists(pipeline.writers[0].path)

    def test_unexpected_error_becomes_export_failed(self, transformer, pipeline):
        pipeline.reader_error = RuntimeError("decoder crashed")

        events = run_events(transformer, {"inputPath": "in.mp4"})

        error = events[-1]
        assert error.code == "EXPORT_FAILED"
        assert "decoder crashed" in error.message
        assert "Traceback" in error.details

    def test_empty_input(self, transformer, pipeline):
        pipeline.frame_count = 0

        events = run_events(transformer, {"inputPath": "in.mp4"})

        assert events[-1].code == "EXPORT_FAILED"
        assert "No frames" in events[-1].message

    def test_failed_handle_status(self, transformer, pipeline):
        recorder = Recorder()
        handle = transformer.transform({"inputPath": "in.mp4", "lutAsset": "luts/none.cube"},
                                       recorder.on_progress, recorder.on_completed,
                                       recorder.on_error)

        assert handle.wait(10)
        assert handle.status is ExportStatus.FAILED
        assert handle.error.code == "ASSET_NOT_FOUND"


class TestCancellation:
    """Tests for cancelling exports."""

    def start_slow(self, transformer, pipeline, recorder, request=None):
        pipeline.frame_count = 1000
        pipeline.delay = 0.01
        started = threading.Event()

        def on_progress(value):
            recorder.on_progress(value)
            started.set()

        handle = transformer.transform(request or {"inputPath": "in.mp4"},
                                       on_progress, recorder.on_completed, recorder.on_error)
        assert started.wait(10)
        deadline = time.monotonic() + 10
        while not pipeline.writers and time.monotonic() < deadline:
            time.sleep(0.005)
        assert pipeline.writers
        return handle

    def test_cancel_handle(self, transformer, pipeline):
        recorder = Recorder()
        handle = self.start_slow(transformer, pipeline, recorder)

        handle.cancel()

        assert handle.wait(10)
        assert recorder.finished.wait(10)
        assert handle.status is ExportStatus.CANCELLED
        assert recorder.errors[0][0] == "EXPORT_CANCELLED"
        assert recorder.completed == []

    def test_cancel_removes_partial_output(self, transformer, pipeline):
        recorder = Recorder()
        handle = self.start_slow(transformer, pipeline, recorder)

        assert transformer.cancel(handle)
        assert handle.wait(10)

        assert pipeline.writers[0].aborted
        assert not os.path.exists(handle.output_path)

    def test_cancel_without_export(self, transformer):
        assert transformer.cancel() is False

    def test_cancel_finished_export(self, transformer, pipeline):
        handle = transformer.transform({"inputPath": "in.mp4"})
        assert handle.wait(10)

        assert transformer.cancel(handle) is False
        assert handle.status is ExportStatus.COMPLETED

    def test_new_export_cancels_previous(self, transformer, pipeline):
        first_recorder = Recorder()
        first = self.start_slow(transformer, pipeline, first_recorder)

        pipeline.frame_count = 3
        pipeline.delay = 0.0
        second_recorder = Recorder()
        second = transformer.transform({"inputPath": "in.mp4"}, second_recorder.on_progress,
                                       second_recorder.on_completed, second_recorder.on_error)

        assert first.status is ExportStatus.CANCELLED
        assert second.wait(10)
        assert second.status is ExportStatus.COMPLETED
        assert second.id != first.id

    def test_closing_event_stream_cancels(self, transformer, pipeline):
        pipeline.frame_count = 1000
        pipeline.delay = 0.01
        events = iter_transform_events(transformer, {"inputPath": "in.mp4"}, timeout=10)

        assert next(events) == ProgressEvent(0.0)
        handle = transformer._current
        events.close()

        assert handle.wait(10)
        assert handle.status is ExportStatus.CANCELLED

    def test_export_finishing_after_close_still_completes(self, asset_dir, pipeline, output_dir):
        instance = VideoTransformer(AssetResolver([asset_dir]), output_dir=str(output_dir))
        instance.close()
        recorder = Recorder()
        request = TransformRequest(input_path="in.mp4")
        handle = ExportHandle(request, instance._output_path_for(request))

        instance._run(handle, recorder.on_progress, recorder.on_completed, recorder.on_error)

        assert handle.status is ExportStatus.COMPLETED
        assert recorder.progress == []
        assert recorder.completed == []

    def test_failure_after_close_still_finishes_handle(self, asset_dir, pipeline, output_dir):
        instance = VideoTransformer(AssetResolver([asset_dir]), output_dir=str(output_dir))
        instance.close()
        recorder = Recorder()
        request = TransformRequest(input_path="in.mp4", lut_asset="luts/none.cube")
        handle = ExportHandle(request, instance._output_path_for(request))

        instance._run(handle, recorder.on_progress, recorder.on_completed, recorder.on_error)

        assert handle.done
        assert handle.status is ExportStatus.FAILED
        assert handle.error.code == "ASSET_NOT_FOUND"
        assert recorder.errors == []


class TestProgress:
    """Tests for progress estimation and throttling."""

    class Clock:
        def __init__(self):
            self.now = 0.0

        def __call__(self):
            return self.now

    def test_estimator_ramps_then_holds(self):
        clock = self.Clock()
        estimator = ProgressEstimator(start=0.1, end=0.9, duration=15.0, clock=clock)

        assert estimator.estimate() == pytest.approx(0.1)
        clock.now = 7.5
        assert estimator.estimate() == pytest.approx(0.5)
        clock.now = 100.0
        assert estimator.estimate() == pytest.approx(0.9)

    def test_frame_based_fraction(self):
        tracker = ProgressTracker(lambda p: None, total_frames=10)

        assert tracker.fraction(0) == pytest.approx(SETUP_PROGRESS)
        assert tracker.fraction(5) == pytest.approx(0.545)
        assert tracker.fraction(10) == pytest.approx(PROGRESS_CAP)
        assert tracker.fraction(50) == pytest.approx(PROGRESS_CAP)

    def test_updates_are_throttled(self):
        clock = self.Clock()
        reported = []
        tracker = ProgressTracker(reported.append, total_frames=10, interval=0.2, clock=clock)

        tracker.update(5)
        tracker.update(6)
        clock.now = 0.1
        tracker.update(7)
        clock.now = 0.3
        tracker.update(10)

        assert reported == pytest.approx([0.545, PROGRESS_CAP])

    def test_unknown_total_uses_time(self):
        clock = self.Clock()
        reported = []
        tracker = ProgressTracker(reported.append, total_frames=0, interval=0.2, clock=clock)

        clock.now = 7.5
        tracker.update(1)
        clock.now = 60.0
        tracker.update(2)

        assert reported == pytest.approx([0.5, 0.9])


class TestEvents:
    """Tests for channel-style event maps."""

    def test_progress_map(self):
        assert ProgressEvent(0.25).to_dict() == {"progress": 0.25}
        assert not ProgressEvent(0.25).is_terminal

    def test_completion_map(self):
        event = ProgressEvent(1.0, output_path="/tmp/out.mp4")
        assert event.to_dict() == {"progress": 1.0, "outputPath": "/tmp/out.mp4"}
        assert event.is_terminal

    def test_error_map(self):
        event = ErrorEvent("IO_FAILURE", "Failed to read asset", None)
        assert event.to_dict() == {"code": "IO_FAILURE", "message": "Failed to read asset",
                                   "details": None}
        assert event.is_terminal
