"""
Unit tests for the sambright-access command line interface.
"""
import pytest
from click.testing import CliRunner
from unittest.mock import MagicMock, patch

from sambright_access.cli.cli_main import cli


@pytest.fixture
def runner():
    return CliRunner()


class TestPolicyCommand:

    def test_prints_every_role(self, runner):
        result = runner.invoke(cli, ['policy'])
        assert result.exit_code == 0
        for label in ('Super Admin', 'Production', 'Field Person', 'Customer Service', 'Client'):
            assert label in result.output

    def test_single_role(self, runner):
        result = runner.invoke(cli, ['policy', '--role', 'field'])
        assert result.exit_code == 0
        assert 'resources: dashboard, clients, projects' in result.output
        assert 'Production' not in result.output

    def test_unknown_role(self, runner):
        result = runner.invoke(cli, ['policy', '--role', 'superuser'])
        assert result.exit_code != 0
        assert 'Unknown role: superuser' in result.output


class TestCheckCommand:

    def test_allowed(self, runner):
        result = runner.invoke(cli, ['check', 'production', '/inventory'])
        assert result.exit_code == 0
        assert 'production -> inventory: allowed' in result.output

    def test_denied_lists_roles(self, runner):
        result = runner.invoke(cli, ['check', 'production', '/clients'])
        assert result.exit_code == 1
        assert 'denied' in result.output
        assert 'Available to: Super Admin' in result.output

    def test_root_path(self, runner):
        result = runner.invoke(cli, ['check', 'client', '/'])
        assert result.exit_code == 0
        assert 'client -> dashboard: allowed' in result.output

    def test_unknown_role_denied(self, runner):
        assert runner.invoke(cli, ['check', 'superuser', 'users']).exit_code == 1


class TestInitConfigCommand:

    def test_writes_file(self, runner, tmp_path):
        output = tmp_path / 'configs' / 'access.yaml'
        result = runner.invoke(cli, ['init-config', '--output', str(output)])
        assert result.exit_code == 0
        assert output.exists()

    def test_refuses_to_overwrite(self, runner, tmp_path):
        output = tmp_path / 'access.yaml'
        output.write_text('existing: true\n')
        result = runner.invoke(cli, ['init-config', '--output', str(output)])
        assert result.exit_code != 0
        assert output.read_text() == 'existing: true\n'

    def test_force_overwrites(self, runner, tmp_path):
        output = tmp_path / 'access.yaml'
        output.write_text('existing: true\n')
        result = runner.invoke(cli, ['init-config', '--output', str(output), '--force'])
        assert result.exit_code == 0
        assert 'supabase' in output.read_text()


class TestServeCommand:

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(cli, ['serve', '--config', str(tmp_path / 'nope.yaml')])
        assert result.exit_code != 0
        assert 'Config file not found' in result.output

    def test_runs_app(self, runner, tmp_path):
        app = MagicMock()
        config_path = tmp_path / 'access.yaml'
        config_path.write_text('auth:\n  profile_backend: supabase\n')
        with patch('sambright_access.interfaces.web_app.app.create_app', return_value=app) as create:
            result = runner.invoke(cli, ['serve', '--config', str(config_path), '--port', '9000', '-v', '1'])
        assert result.exit_code == 0, result.output
        create.assert_called_once()
        app.run.assert_called_once_with(host='0.0.0.0', port=9000, debug=False)
        app.extensions.__getitem__.return_value.close.assert_called_once_with()
