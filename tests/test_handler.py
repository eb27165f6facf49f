from unittest.mock import MagicMock, patch

import pytest
import requests

import handler
from tools.timeline_export.engine import EngineLoadError
from tools.timeline_export.session import EngineSession

CLIPS = [
    {'src': 'https://cdn.example.com/a.mp4', 'start': 0, 'end': 5},
    {'src': 'https://cdn.example.com/b.mp4', 'start': 3, 'end': 8, 'brightness': 1.2},
]


def _job(**job_input):
    return {'id': 'job-1', 'input': job_input}


@pytest.fixture(autouse=True)
def no_progress_updates():
    with patch('handler.runpod.serverless.progress_update') as mock_progress:
        yield mock_progress


def test_missing_tool():
    assert handler.handler(_job()) == {'error': "Missing 'tool' parameter"}


def test_unknown_tool():
    assert handler.handler(_job(tool='upscale', outputUrl='https://up'))['error'] == 'Unknown tool: upscale'


def test_missing_output_url():
    assert handler.handler(_job(tool='timeline_export')) == {'error': "Missing 'outputUrl' parameter"}


def test_preview_needs_no_engine():
    with patch('handler.get_session') as mock_session:
        result = handler.handler(_job(
            tool='timeline_preview',
            config={'operation': 'video', 'clips': CLIPS, 'options': {'width': 1280, 'height': 720}},
        ))
    mock_session.assert_not_called()
    assert result['status'] == 'completed'
    assert result['overlays'] == 2


def test_preview_error():
    result = handler.handler(_job(tool='timeline_preview', config={'operation': 'video', 'clips': []}))
    assert 'error' in result


def test_preview_malformed_clip_becomes_error_response():
    result = handler.handler(_job(
        tool='timeline_preview',
        config={'operation': 'video', 'clips': [42], 'options': {'width': 640, 'height': 360}},
    ))
    assert result['error'].startswith('Timeline preview error:')
    assert 'Traceback' in result['traceback']
    assert result['tool'] == 'timeline_preview'


def test_export_uploads_result(session, no_progress_updates):
    uploads = []

    def fake_upload(path, url):
        with open(path, 'rb') as f:
            uploads.append((path, url, f.read()))
        return {'uploaded': True, 'attempts': 1}

    with patch('handler.get_session', return_value=session), \
            patch('handler.upload_file', side_effect=fake_upload):
        result = handler.handler(_job(
            tool='timeline_export',
            outputUrl='https://bucket.example.com/out.mp4?sig=1',
            config={'operation': 'video', 'clips': CLIPS, 'options': {'width': 1280, 'height': 720}},
        ))

    assert result['status'] == 'completed'
    assert result['operation'] == 'video'
    assert result['mode'] == 'overlay'
    assert result['outputSize'] == len(b'rendered:timeline_video.mp4')
    path, url, data = uploads[0]
    assert path.endswith('output.mp4')
    assert url == 'https://bucket.example.com/out.mp4?sig=1'
    assert data == b'rendered:timeline_video.mp4'
    assert no_progress_updates.called


def test_export_load_failure_reports_session_error():
    def factory(options):
        raise EngineLoadError("FFmpeg executable not found")

    failing = EngineSession(engine_factory=factory)
    with patch('handler.get_session', return_value=failing):
        result = handler.handler(_job(tool='timeline_export', outputUrl='https://up', config={'operation': 'video'}))
    assert result == {'error': 'FFmpeg executable not found', 'tool': 'timeline_export'}


def test_export_processing_error(session):
    with patch('handler.get_session', return_value=session), patch('handler.upload_file') as mock_upload:
        result = handler.handler(_job(
            tool='timeline_export', outputUrl='https://up', config={'operation': 'video', 'clips': []},
        ))
    assert result['error'] == 'Timeline export error: No valid video clips provided'
    assert 'Traceback' in result['traceback']
    mock_upload.assert_not_called()


def test_export_upload_failure(session):
    with patch('handler.get_session', return_value=session), \
            patch('handler.upload_file', side_effect=RuntimeError('Upload failed after 3 attempts')):
        result = handler.handler(_job(
            tool='timeline_export', outputUrl='https://up',
            config={'operation': 'audio', 'clips': CLIPS},
        ))
    assert result['error'] == 'Failed to upload output: Upload failed after 3 attempts'
    assert result['outputSize'] > 0


def test_output_extension():
    assert handler.get_output_extension({'operation': 'audio'}) == '.mp3'
    assert handler.get_output_extension({'operation': 'video', 'options': {'outName': 'cut.MOV'}}) == '.mov'
    assert handler.get_output_extension({}) == '.mp4'


# ============================================
# upload_file
# ============================================

def test_upload_sets_audio_content_type(tmp_path):
    path = tmp_path / 'mix.mp3'
    path.write_bytes(b'id3')
    response = MagicMock(status_code=200)

    with patch('handler.requests.put', return_value=response) as mock_put:
        result = handler.upload_file(str(path), 'https://bucket.example.com/a/b.mp3?sig=1')

    assert result == {'uploaded': True, 'size': 3, 'contentType': 'audio/mpeg', 'attempts': 1}
    assert mock_put.call_args.kwargs['headers'] == {'Content-Type': 'audio/mpeg'}


def test_upload_retries_then_fails(tmp_path):
    path = tmp_path / 'out.mp4'
    path.write_bytes(b'mp4')

    with patch('handler.requests.put', side_effect=requests.exceptions.ConnectionError('reset')) as mock_put, \
            patch('handler.time.sleep') as mock_sleep:
        with pytest.raises(RuntimeError, match='Upload failed after 3 attempts'):
            handler.upload_file(str(path), 'https://bucket.example.com/out.mp4')

    assert mock_put.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]


def test_upload_rejects_missing_and_empty(tmp_path):
    with pytest.raises(FileNotFoundError):
        handler.upload_file(str(tmp_path / 'missing.mp4'), 'https://up')

    empty = tmp_path / 'empty.mp4'
    empty.write_bytes(b'')
    with pytest.raises(ValueError):
        handler.upload_file(str(empty), 'https://up')
