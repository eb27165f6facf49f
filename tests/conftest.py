"""
Pytest Configuration and Shared Fixtures for Timeline Export Tests
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.timeline_export.engine import EngineRunError
from tools.timeline_export.models import TimelineClip
from tools.timeline_export.session import EngineSession


# ============================================
# Fake Engine
# ============================================

class FakeEngine:
    """
    In-memory stand-in for FFmpegEngine.

    run() records its arguments and writes a fake payload to the output
    name (the last argument). fail_runs makes the next N runs raise.
    """

    def __init__(self, width=1920, height=1080):
        self.files = {}
        self.runs = []
        self.writes = []
        self.deleted = []
        self.probes = []
        self.load_calls = 0
        self.closed = False
        self.fail_runs = 0
        self.probe_error = None
        self.probe_output = json.dumps({'streams': [{'width': width, 'height': height}]})

    def load(self):
        self.load_calls += 1

    def close(self):
        self.closed = True

    def write_file(self, name, data):
        self.files[name] = data
        self.writes.append(name)

    def read_file(self, name):
        return self.files[name]

    def delete_file(self, name):
        self.files.pop(name, None)
        self.deleted.append(name)

    def run(self, *args):
        self.runs.append(list(args))
        if self.fail_runs > 0:
            self.fail_runs -= 1
            raise EngineRunError("FFmpeg failed (exit 1):\nInvalid data", returncode=1)
        self.files[args[-1]] = f"rendered:{args[-1]}".encode()

    def probe(self, *args):
        self.probes.append(list(args))
        if self.probe_error is not None:
            raise self.probe_error
        return self.probe_output


def fake_fetch_all(urls):
    return [f"media:{url}".encode() for url in urls]


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def session(fake_engine):
    """Session already loaded with the fake engine."""
    session = EngineSession(engine_factory=lambda options: fake_engine, fetcher=fake_fetch_all)
    session.load()
    assert session.is_ready
    return session


@pytest.fixture
def two_clips():
    """Clip A on [0, 5] and clip B on [3, 8] with a brightness boost."""
    return [
        TimelineClip(src='a.mp4', start=0, end=5, track_id='t1'),
        TimelineClip(src='b.mp4', start=3, end=8, track_id='t2', brightness=1.2),
    ]
