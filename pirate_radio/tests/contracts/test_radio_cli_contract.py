"""
Contract tests for the pirate-radio command line: argument parsing, config
overrides, operator commands and early exits.
"""

import logging
from unittest.mock import Mock

import pytest

from pirate_radio.app.config import RadioConfig
from pirate_radio.app.radio import ConsoleObserver, apply_overrides, build_parser, handle_command, main
from pirate_radio.music_logic.catalog import PlaybackMode
from pirate_radio.state.notifications import StationEvent


class TestArguments:

    def test_positional_directory(self):
        options = build_parser().parse_args(["/srv/music"])

        config = apply_overrides(RadioConfig(), options)

        assert config.music_dir == "/srv/music"

    def test_dir_option_wins_over_positional(self):
        options = build_parser().parse_args(["/srv/a", "-d", "/srv/b"])

        assert apply_overrides(RadioConfig(), options).music_dir == "/srv/b"

    def test_flags_override_config(self):
        options = build_parser().parse_args(["-f", "89.9", "-s", "--drain", "0.2", "--log-level", "debug"])

        config = apply_overrides(RadioConfig(), options)

        assert config.frequency == 89.9
        assert config.shuffle is True
        assert config.drain_seconds == 0.2
        assert config.log_level == "DEBUG"

    def test_unset_flags_keep_config(self):
        config = apply_overrides(RadioConfig(frequency=91.0, shuffle=True), build_parser().parse_args([]))

        assert config.frequency == 91.0
        assert config.shuffle is True

    def test_version_flag_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "pirate-radio" in capsys.readouterr().out

    def test_out_of_band_frequency_rejected(self):
        with pytest.raises(ValueError):
            apply_overrides(RadioConfig(), build_parser().parse_args(["-f", "150"]))

    def test_frequency_flag_corrects_out_of_band_environment(self, clean_env):
        clean_env["PIRATE_RADIO_FREQUENCY"] = "150"

        config = apply_overrides(RadioConfig.load_config(), build_parser().parse_args(["-f", "90"]))

        assert config.frequency == 90.0


class TestCommands:

    @pytest.fixture
    def station(self):
        station = Mock()
        station.toggle_shuffle.return_value = PlaybackMode.SHUFFLE
        return station

    def test_next(self, station):
        assert handle_command(station, "n\n") is True
        station.next_track.assert_called_once_with()

    def test_previous(self, station):
        assert handle_command(station, "P") is True
        station.previous_track.assert_called_once_with()

    def test_shuffle(self, station):
        assert handle_command(station, "s") is True
        station.toggle_shuffle.assert_called_once_with()

    def test_quit(self, station):
        assert handle_command(station, "q\n") is False

    @pytest.mark.parametrize("line", ["", "\n", "help", "x"])
    def test_other_input_keeps_running(self, station, line):
        assert handle_command(station, line) is True
        station.next_track.assert_not_called()
        station.previous_track.assert_not_called()


class TestMain:

    def test_missing_directory_exits_with_error(self, clean_env, tmp_path):
        assert main([str(tmp_path / "missing")]) == 1

    def test_invalid_configuration_exits_with_usage_error(self, clean_env, tmp_path):
        assert main([str(tmp_path), "-f", "200"]) == 2

    def test_out_of_band_environment_without_flag_exits_with_usage_error(self, clean_env, tmp_path):
        clean_env["PIRATE_RADIO_FREQUENCY"] = "150"

        assert main([str(tmp_path)]) == 2

    def test_missing_transmitter_exits_with_error(self, clean_env, tmp_path, caplog):
        clean_env["PIRATE_RADIO_TRANSMITTER_PATH"] = str(tmp_path / "no_fm_transmitter")

        with caplog.at_level(logging.ERROR, logger="pirate_radio.app.radio"):
            assert main([str(tmp_path)]) == 1

        assert "fm_transmitter not found" in caplog.text


class TestConsoleObserver:

    def test_logs_track_and_error_events(self, caplog):
        observer = ConsoleObserver()

        with caplog.at_level(logging.INFO, logger="pirate_radio.app.radio"):
            observer.on_track_started(StationEvent.track_started("/music/a.mp3"))
            observer.on_error(StationEvent.error(RuntimeError("boom"), "/music/a.mp3"))

        assert "a.mp3" in caplog.text
        assert "RuntimeError (a.mp3): boom" in caplog.text
