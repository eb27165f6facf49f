"""
RunPod Serverless Handler for Timeline Export

This handler processes media jobs for:
- Timeline Export: flatten a multi-track timeline into one video or audio file,
  or mux / remux / transcode media on the same FFmpeg engine
- Timeline Preview: return the FFmpeg filter graph for an export without running it

Usage:
    Deploy to RunPod Serverless with ffmpeg installed (or FFMPEG_CORE_PATH set)
"""

import os
import shutil
import tempfile
import threading
import time
import traceback
from typing import Optional

import requests
import runpod

from tools.timeline_export.processor import preview_timeline_export, process_timeline_export
from tools.timeline_export.session import EngineSession

# ==================== Constants ====================

WORKSPACE = os.environ.get('WORKSPACE', '/workspace')

OUTPUT_EXTENSIONS = {
    'video': '.mp4',
    'audio': '.mp3',
    'mux': '.mp4',
    'remux': '.mp4',
    'transcode_audio': '.mp3',
    'transcode_video': '.mp4',
}

CONTENT_TYPES = {
    '.mp4': 'video/mp4',
    '.mov': 'video/quicktime',
    '.webm': 'video/webm',
    '.mkv': 'video/x-matroska',
    '.m4v': 'video/x-m4v',
    '.mp3': 'audio/mpeg',
    '.m4a': 'audio/mp4',
    '.aac': 'audio/aac',
    '.wav': 'audio/wav',
    '.ogg': 'audio/ogg',
}

# ==================== Engine Session ====================

# One engine per worker, loaded on the first job and reused after that
_SESSION: Optional[EngineSession] = None
_SESSION_LOCK = threading.Lock()


def get_session() -> EngineSession:
    global _SESSION
    with _SESSION_LOCK:
        if _SESSION is None:
            _SESSION = EngineSession()
        return _SESSION


# ==================== Helper Functions ====================

def upload_file(path: str, url: str, max_retries: int = 3) -> dict:
    """
    Upload file to presigned URL with retry logic and verification.
    Returns dict with upload status and details.
    Raises exception on failure after all retries.
    """
    ext = os.path.splitext(path)[1].lower()
    content_type = CONTENT_TYPES.get(ext, 'application/octet-stream')

    if not os.path.exists(path):
        print(f"[Upload] ERROR: File not found: {path}")
        raise FileNotFoundError(f"Output file not found: {path}")

    file_size = os.path.getsize(path)
    if file_size == 0:
        print(f"[Upload] ERROR: File is empty: {path}")
        raise ValueError(f"Output file is empty: {path}")

    # Extract destination key from URL for logging (hide signature)
    url_path = url.split('?')[0].split('/')[-2:] if '?' in url else ['unknown']
    dest_key = '/'.join(url_path)
    print(f"[Upload] Starting: {os.path.basename(path)} ({file_size/1024/1024:.2f}MB) -> {dest_key}")

    last_error = None
    for attempt in range(max_retries):
        try:
            start_time = time.time()
            with open(path, 'rb') as f:
                response = requests.put(
                    url,
                    data=f,
                    headers={'Content-Type': content_type},
                    timeout=600
                )
                response.raise_for_status()

            elapsed = time.time() - start_time
            speed_mbps = (file_size / 1024 / 1024) / elapsed if elapsed > 0 else 0
            print(f"[Upload] SUCCESS: {os.path.basename(path)} uploaded in {elapsed:.1f}s ({speed_mbps:.1f} MB/s) - Status: {response.status_code}")

            return {
                "uploaded": True,
                "size": file_size,
                "contentType": content_type,
                "attempts": attempt + 1
            }
        except requests.exceptions.RequestException as e:
            last_error = e
            error_detail = str(e)
            if getattr(e, 'response', None) is not None:
                error_detail = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            print(f"[Upload] FAILED attempt {attempt+1}/{max_retries}: {error_detail}")
            if attempt < max_retries - 1:
                # Exponential backoff: 1s, 2s, 4s
                wait_time = (2 ** attempt)
                print(f"[Upload] Retrying in {wait_time}s...")
                time.sleep(wait_time)

    print(f"[Upload] FATAL: All {max_retries} attempts failed for {path}")
    raise RuntimeError(f"Upload failed after {max_retries} attempts: {last_error}")


def create_progress_callback(job):
    """Create a progress callback that sends updates to RunPod"""
    def callback(progress: float, message: str = None):
        scaled_progress = int(10 + progress * 80)
        update = {"progress": scaled_progress}
        if message:
            update["status"] = message
        runpod.serverless.progress_update(job, update)
    return callback


def get_output_extension(config: dict) -> str:
    """Pick the output extension from an explicit outName or the operation"""
    options = config.get("options") or {}
    out_name = options.get("outName") or options.get("out_name")
    if out_name:
        ext = os.path.splitext(str(out_name))[1].lower()
        if ext:
            return ext
    operation = str(config.get("operation", "video")).lower()
    return OUTPUT_EXTENSIONS.get(operation, '.mp4')


# ==================== Handler ====================

def handler(job):
    """
    Main handler for timeline export jobs

    Input format:
    {
        "tool": "timeline_export",
        "outputUrl": "presigned upload URL",
        "config": {
            "operation": "video" | "audio" | "mux" | "remux" | "transcode_audio" | "transcode_video",
            "clips": [...],
            "options": {...},
            "load": {"log": false, "useWorker": true}
        }
    }

    Preview mode (no upload, no FFmpeg run):
    {
        "tool": "timeline_preview",
        "config": { "operation": "video" | "audio", "clips": [...], "options": {...} }
    }
    """
    job_input = job["input"]
    job_id = job["id"]

    tool = str(job_input.get("tool", "")).lower()
    output_url = job_input.get("outputUrl")
    config = job_input.get("config", {}) or {}

    if not tool:
        return {"error": "Missing 'tool' parameter"}

    # ==================== PREVIEW ====================
    if tool == "timeline_preview":
        try:
            return {"status": "completed", "tool": tool, **preview_timeline_export(config)}
        except Exception as e:
            return {
                "error": f"Timeline preview error: {str(e)}",
                "traceback": traceback.format_exc(),
                "tool": tool
            }

    if tool != "timeline_export":
        return {"error": f"Unknown tool: {tool}"}

    if not output_url:
        return {"error": "Missing 'outputUrl' parameter"}

    # ==================== ENGINE ====================
    session = get_session()
    if not session.is_ready:
        runpod.serverless.progress_update(job, {"progress": 5, "status": "loading ffmpeg"})
        session.load(config.get("load") or {})
        if session.error:
            return {"error": session.error, "tool": tool}

    work_root = WORKSPACE if os.path.isdir(WORKSPACE) else None
    temp_dir = tempfile.mkdtemp(prefix=f"timeline_{job_id}_", dir=work_root)
    try:
        output_path = os.path.join(temp_dir, f"output{get_output_extension(config)}")
        progress_callback = create_progress_callback(job)

        print(f"[Handler] Job {job_id}: {config.get('operation', 'video')}")
        try:
            result = process_timeline_export(
                output_path, config,
                progress_callback=progress_callback,
                session=session
            )
        except Exception as e:
            return {
                "error": f"Timeline export error: {str(e)}",
                "traceback": traceback.format_exc(),
                "tool": tool,
                "operation": config.get("operation", "video")
            }

        if not os.path.exists(output_path):
            return {"error": "Processing failed - no output file created"}

        output_size = os.path.getsize(output_path)
        if output_size == 0:
            return {"error": "Processing failed - output file is empty"}

        runpod.serverless.progress_update(job, {
            "progress": 95,
            "status": "uploading"
        })

        try:
            upload_result = upload_file(output_path, output_url)
        except Exception as e:
            return {
                "error": f"Failed to upload output: {str(e)}",
                "tool": tool,
                "outputSize": output_size
            }

        return {
            "status": "completed",
            "tool": tool,
            "outputSize": output_size,
            "uploadAttempts": upload_result.get("attempts", 1),
            **result
        }

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == "__main__":
    runpod.serverless.start({"handler": handler})
