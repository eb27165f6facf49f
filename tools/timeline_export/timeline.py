"""
Timeline State Module

Editing-side model that produces the clip lists handed to the exporter.
Clips are immutable; every edit replaces the clip and recomputes the
timeline duration (max clip end).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_FPS
from .models import TimelineClip

# Shortest clip a resize may produce (seconds)
MIN_CLIP_LENGTH = 0.05


@dataclass
class TimelineTrack:
    id: str
    kind: str = 'video'
    name: str = ''
    clips: List[str] = field(default_factory=list)


class Timeline:
    def __init__(self, timeline_id: str = 'timeline', fps: int = DEFAULT_FPS):
        self.id = timeline_id
        self.fps = fps
        self.duration = 0.0
        self.zoom = 0.5
        self.playhead = 0.0
        self.tracks: Dict[str, TimelineTrack] = {}
        self.clips: Dict[str, TimelineClip] = {}
        self.selection: List[str] = []

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Timeline':
        """
        Build a timeline from a backend payload:
        {"id": ..., "fps": 30, "tracks": [{"id", "kind", "name"}], "clips": [{..., "trackId"}]}

        Clips without an id get one from their position. Clips on unknown
        tracks are dropped.
        """
        timeline = cls(
            timeline_id=str(data.get('id') or 'timeline'),
            fps=int(data.get('fps') or DEFAULT_FPS),
        )
        for track in data.get('tracks') or []:
            timeline.add_track(TimelineTrack(
                id=str(track['id']),
                kind=str(track.get('kind') or track.get('type') or 'video'),
                name=str(track.get('name') or ''),
            ))
        for index, raw in enumerate(data.get('clips') or []):
            clip = TimelineClip.from_dict(raw)
            if clip.id is None:
                clip = replace(clip, id=f"clip_{index}")
            timeline.add_clip(clip)
        return timeline

    def _recompute_duration(self) -> None:
        self.duration = max((c.end for c in self.clips.values()), default=0.0)

    def _replace_clip(self, clip_id: str, clip: TimelineClip) -> None:
        self.clips[clip_id] = clip
        self._recompute_duration()

    # ==================== View ====================

    def set_playhead(self, time: float) -> None:
        self.playhead = max(0.0, time)

    def set_zoom(self, zoom: float) -> None:
        self.zoom = min(1.0, max(0.0, zoom))

    def select_clips(self, clip_ids: List[str]) -> None:
        self.selection = list(clip_ids)

    def selected_clips(self) -> List[TimelineClip]:
        return [self.clips[cid] for cid in self.selection if cid in self.clips]

    # ==================== Edits ====================

    def add_track(self, track: TimelineTrack) -> None:
        self.tracks[track.id] = track

    def add_clip(self, clip: TimelineClip) -> bool:
        """Add clip to its track. Returns False when the track does not exist."""
        if clip.id is None:
            raise ValueError("Timeline clips need an id")
        track = self.tracks.get(clip.track_id) if clip.track_id is not None else None
        if track is None:
            return False
        self.clips[clip.id] = clip
        track.clips.append(clip.id)
        self._recompute_duration()
        return True

    def move_clip(self, clip_id: str, start: float, end: Optional[float] = None) -> None:
        clip = self.clips.get(clip_id)
        if clip is None:
            return
        new_start = max(0.0, start)
        new_end = max(start, end) if end is not None else clip.end
        self._replace_clip(clip_id, replace(clip, start=new_start, end=new_end))

    def trim_clip(self, clip_id: str, in_point: Optional[float] = None, out_point: Optional[float] = None) -> None:
        clip = self.clips.get(clip_id)
        if clip is None:
            return
        self._replace_clip(clip_id, replace(
            clip,
            in_point=clip.in_point if in_point is None else in_point,
            out_point=clip.out_point if out_point is None else out_point,
        ))

    def split_clip(self, clip_id: str, at: float) -> Optional[str]:
        """Split clip at a timeline time strictly inside it. Returns the new clip id."""
        clip = self.clips.get(clip_id)
        if clip is None:
            return None
        split_at = min(max(at, clip.start), clip.end)
        if split_at <= clip.start or split_at >= clip.end:
            return None

        right_id = f"{clip_id}_split_{int(split_at * 1000)}"
        left = replace(clip, end=split_at)
        right = replace(
            clip,
            id=right_id,
            start=split_at,
            in_point=(clip.in_point or 0.0) + (split_at - clip.start),
        )
        self.clips[clip_id] = left
        self.clips[right_id] = right

        track = self.tracks.get(clip.track_id)
        if track is not None:
            track.clips = [
                cid for existing in track.clips
                for cid in ([existing, right_id] if existing == clip_id else [existing])
            ]
        self._recompute_duration()
        return right_id

    def resize_clip(self, clip_id: str, edge: str, time: float) -> None:
        clip = self.clips.get(clip_id)
        if clip is None:
            return
        start, end = clip.start, clip.end
        if edge == 'start':
            start = min(max(0.0, time), clip.end - MIN_CLIP_LENGTH)
        elif edge == 'end':
            end = max(time, clip.start + MIN_CLIP_LENGTH)
        else:
            raise ValueError(f"Unknown edge: {edge!r}")
        self._replace_clip(clip_id, replace(clip, start=start, end=end))

    def update_clip(self, clip_id: str, **patch: Any) -> None:
        clip = self.clips.get(clip_id)
        if clip is None:
            return
        self._replace_clip(clip_id, replace(clip, **patch))

    # ==================== Export ====================

    def export_clips(self, kind: Optional[str] = None) -> List[TimelineClip]:
        """Clips in track order, each track's clips in start order."""
        ordered: List[TimelineClip] = []
        for track in self.tracks.values():
            if kind is not None and track.kind != kind:
                continue
            track_clips = [self.clips[cid] for cid in track.clips if cid in self.clips]
            ordered.extend(sorted(track_clips, key=lambda c: c.start))
        return ordered

    def track_order(self, kind: Optional[str] = None) -> List[str]:
        """Ids of tracks holding at least one clip, in track order."""
        return [
            t.id for t in self.tracks.values()
            if (kind is None or t.kind == kind) and any(cid in self.clips for cid in t.clips)
        ]
