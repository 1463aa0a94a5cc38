"""
Shared pytest fixtures for Pirate Radio contract tests.

Process-level tests replace ffmpeg and fm_transmitter with small shell scripts
written into tmp_path, so no real decoder or radio hardware is needed.
"""

import os
import stat
import textwrap
import threading

import pytest

from pirate_radio.app.radio_station import RadioStation
from pirate_radio.tests.contracts.test_doubles import (
    FakePipelineFactory,
    RecordingObserver,
    wait_until,
)

ENGINE_THREAD_NAMES = ("BroadcastLoop", "TransmitterStderr", "DirectoryRescan")


@pytest.fixture
def music_dir(tmp_path):
    """Music directory with two playable tracks, one non-audio file and one hidden track."""
    directory = tmp_path / "music"
    directory.mkdir()
    (directory / "a.mp3").write_bytes(b"ID3 fake mp3 data")
    (directory / "b.wav").write_bytes(b"RIFF fake wav data")
    (directory / "c.txt").write_text("liner notes")
    (directory / ".hidden.mp3").write_bytes(b"ID3 hidden")
    return directory


@pytest.fixture
def empty_dir(tmp_path):
    directory = tmp_path / "empty"
    directory.mkdir()
    return directory


@pytest.fixture
def make_executable(tmp_path):
    """Write an executable /bin/sh script into tmp_path and return its path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip())
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def fake_ffmpeg(make_executable):
    """ffmpeg that copies the file after ``-i`` to stdout and exits 0."""
    return make_executable(
        "ffmpeg",
        """
        while [ $# -gt 0 ]; do
            if [ "$1" = "-i" ]; then
                cat "$2"
                shift
            fi
            shift
        done
        exit 0
        """,
    )


@pytest.fixture
def failing_ffmpeg(make_executable):
    return make_executable("ffmpeg-fail", "echo 'Invalid data found' >&2\nexit 1\n")


@pytest.fixture
def hanging_ffmpeg(make_executable):
    return make_executable("ffmpeg-hang", "exec sleep 30\n")


@pytest.fixture
def recording_transmitter(make_executable, tmp_path):
    """fm_transmitter that records its argv and the bytes it received."""
    args_file = tmp_path / "transmitter.args"
    output_file = tmp_path / "transmitter.out"
    path = make_executable(
        "fm_transmitter",
        f"""
        echo "$@" > "{args_file}"
        exec cat > "{output_file}"
        """,
    )
    return path, args_file, output_file


@pytest.fixture
def failing_transmitter(make_executable):
    return make_executable("fm_transmitter-fail", "echo 'Error: cannot open mailbox' >&2\nexit 1\n")


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def pipeline_factory():
    return FakePipelineFactory()


@pytest.fixture
def make_station(observer, pipeline_factory):
    """Build RadioStations wired to fake pipelines; closes them at teardown."""
    stations = []

    def _make(directory, **kwargs) -> RadioStation:
        kwargs.setdefault("pipeline_factory", pipeline_factory)
        kwargs.setdefault("observer", observer)
        station = RadioStation(directory, **kwargs)
        stations.append(station)
        return station

    yield _make

    for station in stations:
        station.close()


@pytest.fixture(autouse=True)
def thread_leak_guard():
    """Fail a test that leaves engine threads running after it finishes."""
    yield

    def engine_threads():
        return [t.name for t in threading.enumerate() if t.is_alive() and t.name in ENGINE_THREAD_NAMES]

    wait_until(lambda: not engine_threads(), timeout=3.0)
    assert engine_threads() == [], f"Leaked threads: {engine_threads()}"


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolated environment without PIRATE_RADIO_* variables or a real .env file."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("PIRATE_RADIO_")}
    env["PIRATE_RADIO_ENV_FILE"] = str(tmp_path / "missing.env")
    monkeypatch.setattr(os, "environ", env)
    return env
