"""
Engine Session Module

EngineSession owns one engine instance and its readiness state, and exposes
every composition operation as a method:

    session = EngineSession()
    session.load({'log': False})
    if session.error:
        ...
    video = session.export_timeline_video_composite(clips, {'mode': 'overlay'})

States: unloaded -> loading -> ready, or loading -> error (retriable).
Operations never trigger a load; calling one before the session is ready
raises EngineNotLoadedError before any download or file write.

One export at a time per session: staged filenames are derived from clip
positions, so concurrent exports on the same session would collide.
"""

import importlib
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .constants import (
    CORE_PATH_ENV,
    DEFAULT_FILTERED_VIDEO_OUTPUT,
    DEFAULT_HEIGHT,
    DEFAULT_MUX_OUTPUT,
    DEFAULT_REMUX_OUTPUT,
    DEFAULT_TRANSCODED_AUDIO_OUTPUT,
    DEFAULT_VIDEO_EXTENSION,
    DEFAULT_AUDIO_EXTENSION,
    DEFAULT_WIDTH,
)
from .engine import EngineNotLoadedError, EngineRunError
from .fetch import fetch_all, fetch_binary
from .models import (
    AudioExportOptions,
    EngineState,
    LoadOptions,
    RenderPlan,
    TimelineClip,
    VideoDimensions,
    VideoExportOptions,
)
from .probe import ProbeError, probe_video_dimensions
from .synthesizer import (
    build_clip_effect_filter,
    plan_audio_mix,
    plan_mux,
    plan_remux,
    plan_transcode_audio,
    plan_transcode_video,
    plan_video_composite,
    url_extension,
)

ClipLike = Union[TimelineClip, Dict[str, Any], None]


def _coerce_clips(clips: Sequence[ClipLike]) -> List[Optional[TimelineClip]]:
    coerced: List[Optional[TimelineClip]] = []
    for clip in clips or []:
        if isinstance(clip, dict):
            coerced.append(TimelineClip.from_dict(clip))
        else:
            coerced.append(clip)
    return coerced


def _coerce_clip(clip: ClipLike) -> TimelineClip:
    if isinstance(clip, dict):
        return TimelineClip.from_dict(clip)
    if clip is None:
        raise ValueError("Clip is required")
    return clip


def _default_engine_factory() -> Callable[[LoadOptions], Any]:
    # Resolved at load time so importing the session never touches the engine
    module = importlib.import_module('.engine', __package__)
    return module.create_engine


class EngineSession:
    def __init__(
        self,
        engine_factory: Optional[Callable[[LoadOptions], Any]] = None,
        fetcher: Optional[Callable[[Sequence[str]], List[bytes]]] = None,
    ):
        self._engine_factory = engine_factory
        self._fetch_all = fetcher or fetch_all
        self._engine = None
        self._state = EngineState.UNLOADED
        self._error: Optional[str] = None
        self._lock = threading.Lock()
        self._load_done: Optional[threading.Event] = None

    # ==================== State ====================

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_ready(self) -> bool:
        return self._state == EngineState.READY

    @property
    def is_loading(self) -> bool:
        return self._state == EngineState.LOADING

    @property
    def engine(self):
        return self._engine

    def load(self, options: Union[LoadOptions, Dict[str, Any], None] = None) -> None:
        """
        Construct and handshake the engine once.

        Returns immediately when ready. A caller arriving while another
        thread is loading waits for that attempt instead of starting a new
        one. Failures are recorded in .error and never raised.
        """
        if isinstance(options, dict):
            options = LoadOptions.from_dict(options)
        options = options or LoadOptions()

        with self._lock:
            if self._state == EngineState.READY:
                return
            if self._state == EngineState.LOADING:
                in_flight = self._load_done
            else:
                in_flight = None
                self._state = EngineState.LOADING
                self._error = None
                self._load_done = threading.Event()
            done = self._load_done

        if in_flight is not None:
            in_flight.wait()
            return

        engine = None
        try:
            factory = self._engine_factory or _default_engine_factory()
            merged = LoadOptions(
                log=options.log,
                core_path=options.core_path or os.environ.get(CORE_PATH_ENV),
                use_worker=options.use_worker,
            )
            engine = factory(merged)
            engine.load()
        except Exception as e:
            message = str(e) or 'Failed to load FFmpeg'
            print(f"[Session] Load failed: {message}", flush=True)
            if engine is not None:
                engine.close()
            with self._lock:
                self._engine = None
                self._state = EngineState.ERROR
                self._error = message
        else:
            with self._lock:
                self._engine = engine
                self._state = EngineState.READY
            print("[Session] Engine ready", flush=True)
        finally:
            done.set()

    def close(self) -> None:
        with self._lock:
            engine = self._engine
            self._engine = None
            self._state = EngineState.UNLOADED
            self._error = None
        if engine is not None:
            engine.close()

    def _require_engine(self):
        with self._lock:
            if self._state != EngineState.READY or self._engine is None:
                raise EngineNotLoadedError()
            return self._engine

    # ==================== Helpers ====================

    def fetch_binary(self, url: str) -> bytes:
        return fetch_binary(url)

    def build_video_filter_from_clip(self, clip: ClipLike) -> str:
        return build_clip_effect_filter(_coerce_clip(clip))

    def probe_video_dimensions(self, url: str) -> VideoDimensions:
        return probe_video_dimensions(self._require_engine(), url)

    def _execute(self, engine, plan: RenderPlan) -> bytes:
        """Fetch and stage every input, run the plan, read back the output."""
        try:
            urls = list(dict.fromkeys(url for _, url in plan.staged))
            payloads = dict(zip(urls, self._fetch_all(urls)))
            # All writes finish before the engine runs
            for filename, url in plan.staged:
                engine.write_file(filename, payloads[url])
            engine.run(*plan.args)
            return engine.read_file(plan.output_name)
        finally:
            for filename, _ in plan.staged:
                engine.delete_file(filename)
            engine.delete_file(plan.output_name)

    # ==================== Video composite ====================

    def export_timeline_video_composite(
        self,
        clips: Sequence[ClipLike],
        options: Union[VideoExportOptions, Dict[str, Any], None] = None,
    ) -> bytes:
        engine = self._require_engine()

        if isinstance(options, dict):
            options = VideoExportOptions.from_dict(options)
        options = options or VideoExportOptions()

        valid_clips = [c for c in _coerce_clips(clips) if c]
        if not valid_clips:
            raise ValueError("No valid video clips provided")

        width, height = options.width, options.height
        if not width or not height:
            try:
                dimensions = probe_video_dimensions(engine, valid_clips[0].src)
            except ProbeError as e:
                print(f"[Session] {e}; using {DEFAULT_WIDTH}x{DEFAULT_HEIGHT}", flush=True)
                dimensions = VideoDimensions(DEFAULT_WIDTH, DEFAULT_HEIGHT)
            width = width or dimensions.width
            height = height or dimensions.height

        plan = plan_video_composite(valid_clips, options, width, height)
        print(
            f"[Session] Video composite: {len(valid_clips)} clips, {width}x{height}, "
            f"mode={options.mode.value}",
            flush=True,
        )
        return self._execute(engine, plan)

    # ==================== Audio mixdown ====================

    def export_timeline_audio_mix(
        self,
        clips: Sequence[ClipLike],
        options: Union[AudioExportOptions, Dict[str, Any], None] = None,
    ) -> bytes:
        engine = self._require_engine()

        if isinstance(options, dict):
            options = AudioExportOptions.from_dict(options)
        options = options or AudioExportOptions()

        plan = plan_audio_mix(_coerce_clips(clips), options)
        print(f"[Session] Audio mix: {len(plan.staged)} clips @ {options.sample_rate}Hz", flush=True)
        return self._execute(engine, plan)

    # ==================== Muxing & transcode ====================

    def mux_video_audio(
        self,
        video_data: bytes,
        audio_data: bytes,
        output_name: str = DEFAULT_MUX_OUTPUT,
    ) -> bytes:
        engine = self._require_engine()
        video_name = 'temp_video.mp4'
        audio_name = 'temp_audio.mp3'

        try:
            engine.write_file(video_name, video_data)
            engine.write_file(audio_name, audio_data)
            engine.run(*plan_mux(video_name, audio_name, output_name).args)
            return engine.read_file(output_name)
        finally:
            for name in (video_name, audio_name, output_name):
                engine.delete_file(name)

    def remux_video_from_url(self, url: str, output_name: str = DEFAULT_REMUX_OUTPUT) -> bytes:
        """Stream copy; if the container rejects that, copy video and re-encode audio once."""
        engine = self._require_engine()
        input_name = f"input_video.{url_extension(url, DEFAULT_VIDEO_EXTENSION)}"

        data = fetch_binary(url)
        try:
            engine.write_file(input_name, data)
            try:
                engine.run(*plan_remux(input_name, output_name).args)
            except EngineRunError as e:
                print(f"[Session] Stream copy failed, re-encoding audio: {e}", flush=True)
                engine.delete_file(output_name)
                engine.run(*plan_remux(input_name, output_name, reencode_audio=True).args)
            return engine.read_file(output_name)
        finally:
            engine.delete_file(input_name)
            engine.delete_file(output_name)

    def transcode_audio(
        self,
        input_data: bytes,
        output_name: str = DEFAULT_TRANSCODED_AUDIO_OUTPUT,
        input_name: str = 'input_audio.wav',
    ) -> bytes:
        engine = self._require_engine()
        try:
            engine.write_file(input_name, input_data)
            engine.run(*plan_transcode_audio(input_name, output_name).args)
            return engine.read_file(output_name)
        finally:
            engine.delete_file(input_name)
            engine.delete_file(output_name)

    def transcode_audio_from_url(
        self,
        url: str,
        output_name: str = DEFAULT_TRANSCODED_AUDIO_OUTPUT,
    ) -> bytes:
        self._require_engine()
        data = fetch_binary(url)
        input_name = f"input_audio.{url_extension(url, DEFAULT_AUDIO_EXTENSION)}"
        return self.transcode_audio(data, output_name, input_name=input_name)

    def transcode_video_from_url_with_filters(
        self,
        url: str,
        clip: ClipLike,
        output_name: str = DEFAULT_FILTERED_VIDEO_OUTPUT,
    ) -> bytes:
        engine = self._require_engine()
        clip = _coerce_clip(clip)
        input_name = f"input_video.{url_extension(url, DEFAULT_VIDEO_EXTENSION)}"

        data = fetch_binary(url)
        try:
            engine.write_file(input_name, data)
            engine.run(*plan_transcode_video(input_name, clip, output_name).args)
            return engine.read_file(output_name)
        finally:
            engine.delete_file(input_name)
            engine.delete_file(output_name)
