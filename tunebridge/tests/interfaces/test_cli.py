import io
import json
import logging
from unittest.mock import Mock

import pytest

from tunebridge.application.resolution import Resolution, ResolutionFailure
from tunebridge.crosscutting.config import ConfigError, SecretManager
from tunebridge.domain.entities import Kind, ResourceRef, Service
from tunebridge.interfaces.cli import CLI


SPOTIFY_TRACK = ResourceRef(Service.SPOTIFY, Kind.TRACK, 'abc123')
TIDAL_TRACK = ResourceRef(Service.TIDAL, Kind.TRACK, '77646170')


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logging.getLogger('tunebridge').handlers.clear()


class TestCLI:
    """Tests for CLI commands."""

    def setup_method(self):
        self.orchestrator = Mock()
        self.orchestrator.resolve_message.return_value = Resolution(
            message_id='m1',
            resources={Service.SPOTIFY: [SPOTIFY_TRACK], Service.TIDAL: [TIDAL_TRACK]},
            failures=[ResolutionFailure(SPOTIFY_TRACK, 'match', 'no_match', Service.YOUTUBE)],
        )
        self.factory = Mock(return_value=self.orchestrator)

    def make_cli(self, tmp_path, environ=None):
        manager = SecretManager(str(tmp_path), environ=environ or {})
        return CLI(manager=manager, orchestrator_factory=self.factory)

    def test_no_command_prints_help_and_exits(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)

        with pytest.raises(SystemExit) as exc:
            cli.run([])

        assert exc.value.code == 1
        assert 'tunebridge' in capsys.readouterr().out

    def test_resolve_text_output(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)

        cli.run(['resolve', 'https://open.spotify.com/track/abc123'])

        out = capsys.readouterr().out
        assert 'spotify:' in out
        assert '  https://open.spotify.com/track/abc123' in out
        assert '  https://tidal.com/browse/track/77646170' in out
        assert 'failed:' in out
        assert 'spotify:track:abc123 -> youtube [match] no_match' in out
        self.factory.assert_called_once_with(cli.manager, cli.metrics)
        self.orchestrator.resolve_message.assert_called_once_with('https://open.spotify.com/track/abc123')

    def test_resolve_json_output(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)

        cli.run(['resolve', '--json', 'https://open.spotify.com/track/abc123'])

        data = json.loads(capsys.readouterr().out)
        assert data['message_id'] == 'm1'
        assert data['resources']['tidal'][0]['id'] == '77646170'
        assert data['failures'][0]['target'] == 'youtube'

    def test_resolve_reads_stdin(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr('sys.stdin', io.StringIO('spotify:track:abc123'))
        cli = self.make_cli(tmp_path)

        cli.run(['resolve', '-'])

        self.orchestrator.resolve_message.assert_called_once_with('spotify:track:abc123')

    def test_resolve_expands_albums(self, tmp_path, capsys):
        self.orchestrator.expand_tracks.side_effect = lambda resolution, service: [
            ResourceRef(service, Kind.TRACK, 'expanded1')
        ]
        cli = self.make_cli(tmp_path)

        cli.run(['resolve', '--expand-albums', 'spotify:album:xyz'])

        out = capsys.readouterr().out
        assert 'https://open.spotify.com/track/expanded1' in out
        assert self.orchestrator.expand_tracks.call_count == 2

    def test_resolve_writes_metrics_file(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)
        path = tmp_path / 'metrics.json'

        cli.run(['resolve', 'spotify:track:abc123', '--metrics-file', str(path)])

        assert 'total_duration_ms' in json.loads(path.read_text())

    def test_resolve_without_links(self, tmp_path, capsys):
        self.orchestrator.resolve_message.return_value = Resolution(message_id='m2')
        cli = self.make_cli(tmp_path)

        cli.run(['resolve', 'nothing to see here'])

        assert 'No links found' in capsys.readouterr().out

    def test_configuration_error_exits(self, tmp_path, capsys):
        self.factory.side_effect = ConfigError('No catalog is configured')
        cli = self.make_cli(tmp_path)

        with pytest.raises(SystemExit) as exc:
            cli.run(['resolve', 'spotify:track:abc123'])

        assert exc.value.code == 1
        assert 'Configuration error: No catalog is configured' in capsys.readouterr().err

    def test_unexpected_error_exits(self, tmp_path, capsys):
        self.orchestrator.resolve_message.side_effect = RuntimeError('boom')
        cli = self.make_cli(tmp_path)

        with pytest.raises(SystemExit) as exc:
            cli.run(['resolve', 'spotify:track:abc123'])

        assert exc.value.code == 1
        assert 'Error: boom' in capsys.readouterr().err

    def test_extract(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)

        cli.run(['extract', 'a https://tidal.com/browse/album/77646168 b spotify:track:abc123'])

        lines = capsys.readouterr().out.splitlines()
        assert 'spotify\ttrack\tabc123' in lines
        assert 'tidal\talbum\t77646168' in lines
        self.factory.assert_not_called()

    def test_extract_without_links(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path)

        cli.run(['extract', 'plain text'])

        assert 'No links found' in capsys.readouterr().out

    def test_config_summary(self, tmp_path, capsys):
        cli = self.make_cli(tmp_path, environ={'YOUTUBE_API_KEY': 'key'})

        cli.run(['config'])

        out = capsys.readouterr().out
        assert 'youtube: configured' in out
        assert 'spotify: missing credentials' in out
        assert 'Page delay: 200ms' in out

    def test_expand(self, tmp_path, capsys, monkeypatch):
        extractor = Mock()
        extractor.resolver.resolve.return_value = 'https://open.spotify.com/track/abc123'
        monkeypatch.setattr('tunebridge.interfaces.cli.build_extractor', Mock(return_value=extractor))
        cli = self.make_cli(tmp_path)

        cli.run(['expand', 'https://spotify.link/AbCdEf123'])

        assert capsys.readouterr().out.strip() == 'https://open.spotify.com/track/abc123'
        extractor.resolver.resolve.assert_called_once_with('https://spotify.link/AbCdEf123')
