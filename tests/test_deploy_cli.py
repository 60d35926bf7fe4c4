"""
Test cases for the deploytool click CLI.
"""
import json
import pytest
import yaml
from click.testing import CliRunner
from unittest.mock import patch

from deploytool.cli.deploy_cli import cli
from deploytool.core.enums import DifferenceType, UpdateAction
from deploytool.core.models import ComparisonOutcome, SchemaDifference
from deploytool.datastore.connection_validator import ConnectionValidator
from deploytool.deployment.service import DeploymentService
from deploytool.sync.data_sync_service import DataSyncService


@pytest.fixture
def config_path(tmp_path, settings):
    data = {
        'source': {'name': settings.source.name, 'connection_string': settings.source.connection_string},
        'targets': [{'name': t.name, 'connection_string': t.connection_string} for t in settings.targets],
        'config_tables': settings.config_tables,
        'options': {'max_parallel_deployments': 2},
    }
    path = tmp_path / 'deploy.yaml'
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def wired(seeded_cluster, comparer):
    """Patch the CLI wiring so every command runs against fakes."""

    def make_validator(settings):
        return ConnectionValidator(connect_timeout=5, datastore_factory=seeded_cluster.factory)

    def make_service(settings):
        validator = make_validator(settings)
        return DeploymentService(validator, comparer, DataSyncService(validator))

    with patch('deploytool.cli.deploy_cli.build_connection_validator', side_effect=make_validator), \
            patch('deploytool.cli.deploy_cli.build_deployment_service', side_effect=make_service):
        yield seeded_cluster


def invoke(runner, config_path, *args, **kwargs):
    return runner.invoke(cli, ['--config', str(config_path), '--environment', 'test', *args], **kwargs)


class TestRunCommand:

    def test_successful_run_exits_zero(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'run', '--yes')

        assert result.exit_code == 0, result.output
        assert 'Source Database: dev' in result.output
        assert 'DEPLOYMENT COMPLETED SUCCESSFULLY' in result.output
        assert len(wired['prod-eu'].get_table('public.settings').rows) == 3

    def test_failed_target_exits_one(self, runner, config_path, wired):
        wired['prod-us'].fail_connect = True

        result = invoke(runner, config_path, 'run', '--yes')

        assert result.exit_code == 1
        assert 'prod-us: FAILED' in result.output
        assert 'Connection validation failed' in result.output
        assert 'DEPLOYMENT COMPLETED WITH ERRORS' in result.output

    def test_confirmation_declined(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'run', input='n\n')

        assert result.exit_code == 0
        assert 'Deployment cancelled by user.' in result.output
        assert wired['prod-eu'].get_table('public.settings').rows == []

    def test_preview_skips_confirmation_and_writes_scripts(self, runner, config_path, wired, comparer, tmp_path):
        comparer.default_outcome = ComparisonOutcome.from_differences(
            [SchemaDifference('public.new_table', UpdateAction.ADD, DifferenceType.TABLE)]
        )
        comparer.script = 'CREATE TABLE public.new_table (id int);'
        script_dir = tmp_path / 'scripts'

        result = invoke(runner, config_path, 'run', '--preview', '--script-dir', str(script_dir))

        assert result.exit_code == 0, result.output
        assert 'Preview Mode: True' in result.output
        assert (script_dir / 'prod-eu.sql').read_text() == 'CREATE TABLE public.new_table (id int);'
        assert comparer.published == []

    def test_targets_filter_and_report(self, runner, config_path, wired, comparer, tmp_path):
        report = tmp_path / 'report.json'

        result = invoke(runner, config_path, 'run', '--yes', '--schema-only',
                        '--targets', 'prod-ap, prod-eu', '--report', str(report))

        assert result.exit_code == 0, result.output
        assert 'Filtered to: prod-ap, prod-eu' in result.output
        data = json.loads(report.read_text())
        assert sorted(r['target_name'] for r in data['results']) == ['prod-ap', 'prod-eu']
        assert data['overall_success'] is True
        assert sorted(comparer.compared) == ['prod-ap', 'prod-eu']

    def test_schema_only_with_data_only_is_usage_error(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'run', '--yes', '--schema-only', '--data-only')

        assert result.exit_code == 2
        assert 'cannot be used together' in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = invoke(runner, tmp_path / 'nope.yaml', 'run', '--yes')

        assert result.exit_code == 1
        assert 'Failed to load configuration' in result.output

    def test_malformed_target_entry(self, runner, tmp_path):
        path = tmp_path / 'deploy.yaml'
        path.write_text(yaml.safe_dump({
            'source': {'name': 'dev', 'connection_string': 'postgresql://u:p@dev/app'},
            'targets': [42],
        }))

        result = invoke(runner, path, 'run', '--yes')

        assert result.exit_code == 1
        assert 'Failed to load configuration' in result.output
        assert 'must be a mapping' in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)


class TestValidateCommand:

    def test_all_reachable(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'validate')

        assert result.exit_code == 0
        assert result.output.count('OK') == 4

    def test_unreachable_target(self, runner, config_path, wired):
        wired['prod-ap'].fail_connect = True

        result = invoke(runner, config_path, 'validate', '--targets', 'prod-ap')

        assert result.exit_code == 1
        assert 'UNREACHABLE' in result.output
        assert 'prod-eu' not in result.output


class TestInfoCommand:

    def test_info_for_target(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'info', 'prod-eu')

        assert result.exit_code == 0, result.output
        assert 'Database: prod-eu' in result.output
        assert 'Tables: 2' in result.output
        assert 'secret' not in result.output

    def test_unknown_database(self, runner, config_path, wired):
        result = invoke(runner, config_path, 'info', 'nowhere')

        assert result.exit_code == 1
        assert "Unknown database 'nowhere'" in result.output
