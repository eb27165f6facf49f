from unittest.mock import MagicMock, patch

import pytest

from tools.timeline_export.fetch import (
    FetchError,
    fetch_all,
    fetch_binary,
    get_fetch_timeout,
    get_fetch_workers,
)


def _response(status=200, content=b'', reason='OK'):
    response = MagicMock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.reason = reason
    response.content = content
    return response


@patch('tools.timeline_export.fetch.requests.get')
def test_fetch_binary_returns_content(mock_get):
    mock_get.return_value = _response(content=b'media')
    assert fetch_binary('https://cdn.example.com/a.mp4', timeout=5) == b'media'
    mock_get.assert_called_once_with('https://cdn.example.com/a.mp4', timeout=5)


@patch('tools.timeline_export.fetch.requests.get')
def test_fetch_binary_non_ok_raises(mock_get):
    mock_get.return_value = _response(status=403, reason='Forbidden')
    with pytest.raises(FetchError, match='Failed to fetch media: 403 Forbidden') as excinfo:
        fetch_binary('https://cdn.example.com/a.mp4?sig=secret')
    assert excinfo.value.status_code == 403
    assert excinfo.value.url == 'https://cdn.example.com/a.mp4?sig=secret'


@patch('tools.timeline_export.fetch.requests.get')
def test_fetch_binary_uses_env_timeout(mock_get, monkeypatch):
    monkeypatch.setenv('TIMELINE_FETCH_TIMEOUT', '12')
    mock_get.return_value = _response(content=b'x')
    fetch_binary('https://cdn.example.com/a.mp4')
    assert mock_get.call_args.kwargs['timeout'] == 12.0


def test_env_defaults(monkeypatch):
    monkeypatch.delenv('TIMELINE_FETCH_TIMEOUT', raising=False)
    monkeypatch.delenv('TIMELINE_FETCH_WORKERS', raising=False)
    assert get_fetch_timeout() == 300
    assert get_fetch_workers() == 4

    monkeypatch.setenv('TIMELINE_FETCH_WORKERS', 'lots')
    assert get_fetch_workers() == 4
    monkeypatch.setenv('TIMELINE_FETCH_WORKERS', '0')
    assert get_fetch_workers() == 1


@patch('tools.timeline_export.fetch.requests.get')
def test_fetch_all_preserves_order(mock_get):
    mock_get.side_effect = lambda url, timeout: _response(content=url.encode())
    urls = [f'https://cdn.example.com/{i}.mp4' for i in range(6)]
    assert fetch_all(urls, max_workers=3) == [u.encode() for u in urls]


@patch('tools.timeline_export.fetch.requests.get')
def test_fetch_all_raises_first_failure(mock_get):
    def get(url, timeout):
        if url.endswith('bad.mp4'):
            return _response(status=404, reason='Not Found')
        return _response(content=b'ok')

    mock_get.side_effect = get
    with pytest.raises(FetchError, match='404'):
        fetch_all(['https://cdn.example.com/a.mp4', 'https://cdn.example.com/bad.mp4'], max_workers=2)


def test_fetch_all_empty():
    assert fetch_all([]) == []
