"""
Timeline Export Models Module

Plain data types passed into the export pipeline:
- TimelineClip: one media segment placed on the timeline
- VideoExportOptions / AudioExportOptions: parameters of one export call
- LoadOptions: engine construction options
- VideoDimensions: probed frame size
- CompositionMode / EngineState: closed sets of variants

Config dicts coming from the backend may use camelCase or snake_case keys,
so every from_dict accepts both.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import (
    DEFAULT_AUDIO_OUTPUT,
    DEFAULT_FPS,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_VIDEO_OUTPUT,
)


def _cfg(config: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in config and config[key] not in (None, ""):
            return config[key]
    return default


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off", ""}:
            return False
    return default


class CompositionMode(str, Enum):
    OVERLAY = 'overlay'
    CONCAT_PER_TRACK = 'concat-per-track'

    @classmethod
    def parse(cls, value: Any) -> 'CompositionMode':
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.OVERLAY
        normalized = str(value).strip().lower().replace('_', '-')
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown composition mode: {value!r}")


class EngineState(str, Enum):
    UNLOADED = 'unloaded'
    LOADING = 'loading'
    READY = 'ready'
    ERROR = 'error'


@dataclass(frozen=True)
class TimelineClip:
    """A clip on the editing timeline. Times are seconds on the timeline."""

    src: str
    start: float
    end: float
    track_id: Optional[str] = None
    id: Optional[str] = None
    in_point: Optional[float] = None
    out_point: Optional[float] = None
    brightness: float = 1.0
    contrast: float = 1.0
    saturation: float = 1.0
    blur: float = 0.0
    volume: float = 1.0

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimelineClip':
        src = _cfg(data, 'src', 'url', 'source')
        if not src:
            raise ValueError("Clip is missing 'src'")
        track_id = _cfg(data, 'trackId', 'track_id')
        clip_id = _cfg(data, 'id', 'clipId', 'clip_id')
        return cls(
            src=str(src),
            start=float(_cfg(data, 'start', default=0.0)),
            end=float(_cfg(data, 'end', default=0.0)),
            track_id=str(track_id) if track_id is not None else None,
            id=str(clip_id) if clip_id is not None else None,
            in_point=_optional_float(_cfg(data, 'inPoint', 'in_point')),
            out_point=_optional_float(_cfg(data, 'outPoint', 'out_point')),
            brightness=float(_cfg(data, 'brightness', default=1.0)),
            contrast=float(_cfg(data, 'contrast', default=1.0)),
            saturation=float(_cfg(data, 'saturation', 'saturate', default=1.0)),
            blur=float(_cfg(data, 'blur', default=0.0)),
            volume=float(_cfg(data, 'volume', default=1.0)),
        )


@dataclass
class VideoExportOptions:
    width: Optional[int] = None
    height: Optional[int] = None
    fps: int = DEFAULT_FPS
    start: Optional[float] = None
    end: Optional[float] = None
    out_name: str = DEFAULT_VIDEO_OUTPUT
    mode: CompositionMode = CompositionMode.OVERLAY
    tracks_order: Optional[List[str]] = None

    def __post_init__(self):
        self.mode = CompositionMode.parse(self.mode)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VideoExportOptions':
        tracks_order = _cfg(data, 'tracksOrder', 'tracks_order')
        return cls(
            width=_optional_int(_cfg(data, 'width')),
            height=_optional_int(_cfg(data, 'height')),
            fps=int(_cfg(data, 'fps', default=DEFAULT_FPS)),
            start=_optional_float(_cfg(data, 'start')),
            end=_optional_float(_cfg(data, 'end')),
            out_name=str(_cfg(data, 'outName', 'out_name', default=DEFAULT_VIDEO_OUTPUT)),
            mode=CompositionMode.parse(_cfg(data, 'mode')),
            tracks_order=[str(t) for t in tracks_order] if tracks_order is not None else None,
        )


@dataclass
class AudioExportOptions:
    out_name: str = DEFAULT_AUDIO_OUTPUT
    sample_rate: int = DEFAULT_SAMPLE_RATE
    start: Optional[float] = None
    end: Optional[float] = None
    loudness: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AudioExportOptions':
        return cls(
            out_name=str(_cfg(data, 'outName', 'out_name', default=DEFAULT_AUDIO_OUTPUT)),
            sample_rate=int(_cfg(data, 'sampleRate', 'sample_rate', default=DEFAULT_SAMPLE_RATE)),
            start=_optional_float(_cfg(data, 'start')),
            end=_optional_float(_cfg(data, 'end')),
            loudness=_as_bool(_cfg(data, 'loudness'), default=False),
        )


@dataclass
class LoadOptions:
    log: bool = False
    core_path: Optional[str] = None
    use_worker: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoadOptions':
        return cls(
            log=_as_bool(_cfg(data, 'log'), default=False),
            core_path=_cfg(data, 'corePath', 'core_path'),
            use_worker=_as_bool(_cfg(data, 'useWorker', 'use_worker'), default=True),
        )


@dataclass(frozen=True)
class VideoDimensions:
    width: int
    height: int


@dataclass
class RenderPlan:
    """
    Everything the engine needs for one invocation.

    staged holds (filename, url) pairs in input order; they must all be
    written to the engine before args are run.
    """

    args: List[str]
    output_name: str
    staged: List[tuple] = field(default_factory=list)
    graph: Optional[Any] = None
