"""
FFmpeg Engine Module

Wraps the ffmpeg/ffprobe binaries as an engine with its own file namespace:
every engine owns a private scratch directory, media is written into it by
bare filename, and run() executes ffmpeg inside it so argument lists can
reference staged files directly.

Components:
- resolve_engine_paths(): locate ffmpeg/ffprobe from a core path, env or PATH
- FFmpegEngine: load handshake, file namespace, run/probe, teardown
- create_engine(): default factory used by EngineSession
"""

import os
import shutil
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from .constants import (
    CORE_PATH_ENV,
    FFMPEG_BINARY,
    FFPROBE_BINARY,
    FILTER_SCRIPT_THRESHOLD,
    RUN_TIMEOUT_ENV,
    STDERR_TAIL_LINES,
)
from .models import LoadOptions


class EngineError(RuntimeError):
    pass


class EngineLoadError(EngineError):
    pass


class EngineNotLoadedError(EngineError):
    def __init__(self, message: str = "FFmpeg not loaded. Call load() first."):
        super().__init__(message)


class EngineRunError(EngineError):
    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def _binary_name(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def _stderr_tail(stderr: str) -> str:
    error_lines = (stderr or "").strip().splitlines()
    return "\n".join(error_lines[-STDERR_TAIL_LINES:]) if error_lines else "No stderr output"


def _env_timeout() -> Optional[float]:
    raw = os.environ.get(RUN_TIMEOUT_ENV, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        print(f"[Engine] Ignoring invalid {RUN_TIMEOUT_ENV}={raw!r}", flush=True)
        return None
    return value if value > 0 else None


def resolve_engine_paths(core_path: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """
    Find the ffmpeg and ffprobe binaries.

    core_path may be a directory holding both binaries or the ffmpeg binary
    itself. Without one, FFMPEG_CORE_PATH is consulted, then PATH.
    Returns (ffmpeg_path, ffprobe_path or None).
    """
    core = core_path or os.environ.get(CORE_PATH_ENV)

    if core:
        if os.path.isdir(core):
            ffmpeg_path = os.path.join(core, _binary_name(FFMPEG_BINARY))
            probe_dir = core
        else:
            ffmpeg_path = core
            probe_dir = os.path.dirname(core)

        if not os.path.isfile(ffmpeg_path):
            raise EngineLoadError(f"FFmpeg binary not found at core path: {core}")

        ffprobe_path = os.path.join(probe_dir, _binary_name(FFPROBE_BINARY))
        if not os.path.isfile(ffprobe_path):
            ffprobe_path = shutil.which(FFPROBE_BINARY)
        return ffmpeg_path, ffprobe_path

    ffmpeg_path = shutil.which(FFMPEG_BINARY)
    if not ffmpeg_path:
        raise EngineLoadError(
            f"FFmpeg executable not found. Install ffmpeg or set {CORE_PATH_ENV}."
        )
    return ffmpeg_path, shutil.which(FFPROBE_BINARY)


class FFmpegEngine:
    """
    One ffmpeg installation plus a private file namespace.

    With use_worker, every run happens on a single worker thread owned by
    the engine, so concurrent callers are serialized.
    """

    def __init__(
        self,
        ffmpeg_path: str,
        ffprobe_path: Optional[str] = None,
        log: bool = False,
        use_worker: bool = True,
        run_timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.log = log
        self.run_timeout = run_timeout
        self.version: Optional[str] = None
        self.workdir = tempfile.mkdtemp(prefix="timeline_engine_")
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="ffmpeg-worker")
            if use_worker else None
        )
        self._script_counter = 0

    # ==================== Lifecycle ====================

    def load(self) -> None:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", "-version"],
                capture_output=True, text=True, timeout=30
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise EngineLoadError(f"Failed to start FFmpeg: {e}") from e

        if result.returncode != 0:
            raise EngineLoadError(
                f"FFmpeg handshake failed (exit {result.returncode}):\n{_stderr_tail(result.stderr)}"
            )

        lines = (result.stdout or "").strip().splitlines()
        self.version = lines[0] if lines else "unknown"
        print(f"[Engine] Loaded {self.version} from {self.ffmpeg_path}", flush=True)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        shutil.rmtree(self.workdir, ignore_errors=True)

    # ==================== File namespace ====================

    def _path(self, name: str) -> str:
        if not name or name != os.path.basename(name) or name in (".", ".."):
            raise ValueError(f"Engine filenames must be bare names, got: {name!r}")
        return os.path.join(self.workdir, name)

    def write_file(self, name: str, data: bytes) -> None:
        with open(self._path(name), "wb") as f:
            f.write(data)

    def read_file(self, name: str) -> bytes:
        path = self._path(name)
        if not os.path.exists(path):
            raise EngineError(f"Engine output not found: {name}")
        with open(path, "rb") as f:
            return f.read()

    def delete_file(self, name: str) -> None:
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            pass

    def list_files(self) -> List[str]:
        return sorted(os.listdir(self.workdir))

    # ==================== Execution ====================

    def run(self, *args: str) -> None:
        if self._executor is not None:
            self._executor.submit(self._run, list(args)).result()
        else:
            self._run(list(args))

    def _run(self, args: List[str]) -> None:
        loglevel = "info" if self.log else "error"
        command = [self.ffmpeg_path, "-y", "-hide_banner", "-nostdin", "-loglevel", loglevel]
        script_name: Optional[str] = None

        # Long graphs overflow command-line limits on some platforms
        if "-filter_complex" in args:
            fc_idx = args.index("-filter_complex")
            if fc_idx + 1 < len(args) and len(args[fc_idx + 1]) > FILTER_SCRIPT_THRESHOLD:
                self._script_counter += 1
                script_name = f"filter_graph_{self._script_counter}.txt"
                with open(self._path(script_name), "w", encoding="utf-8", newline="\n") as handle:
                    handle.write(args[fc_idx + 1])
                args = args[:fc_idx] + ["-filter_complex_script", script_name] + args[fc_idx + 2:]

        command.extend(args)

        try:
            result = subprocess.run(
                command,
                cwd=self.workdir,
                capture_output=True,
                text=True,
                timeout=self.run_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise EngineRunError(f"FFmpeg timed out after {self.run_timeout}s") from e
        finally:
            if script_name:
                self.delete_file(script_name)

        if self.log and result.stderr:
            for line in result.stderr.strip().splitlines():
                print(f"[FFmpeg] {line}", flush=True)

        if result.returncode != 0:
            raise EngineRunError(
                f"FFmpeg failed (exit {result.returncode}):\n{_stderr_tail(result.stderr)}",
                returncode=result.returncode,
                stderr=result.stderr or "",
            )

    def probe(self, *args: str) -> str:
        """Run ffprobe and return its stdout."""
        if not self.ffprobe_path:
            raise EngineRunError("FFprobe executable not found")
        try:
            result = subprocess.run(
                [self.ffprobe_path, "-v", "error", *args],
                cwd=self.workdir,
                capture_output=True,
                text=True,
                timeout=self.run_timeout or 60,
            )
        except subprocess.TimeoutExpired as e:
            raise EngineRunError("FFprobe timed out") from e

        if result.returncode != 0:
            raise EngineRunError(
                f"FFprobe failed (exit {result.returncode}):\n{_stderr_tail(result.stderr)}",
                returncode=result.returncode,
                stderr=result.stderr or "",
            )
        return result.stdout or ""


def create_engine(options: LoadOptions) -> FFmpegEngine:
    ffmpeg_path, ffprobe_path = resolve_engine_paths(options.core_path)
    return FFmpegEngine(
        ffmpeg_path,
        ffprobe_path,
        log=options.log,
        use_worker=options.use_worker,
        run_timeout=_env_timeout(),
    )
