"""
Tests for the command-line entry point.
"""

import io
import json
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from shopclient import main as cli
from shopshared.exceptions import AuthRejectedError, HTTPStatusError
from shopshared.models import DefinitiveFailure, Success, TransportResponse


@pytest.fixture
def config_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield str(Path(temp_dir) / 'client.conf')


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch.object(cli, 'setup_logging'):
        yield


@pytest.fixture(autouse=True)
def clean_environment():
    cleaned = {key: value for key, value in os.environ.items() if not key.startswith('STOREFRONT_')}
    with patch.dict(os.environ, cleaned, clear=True):
        yield


class TestArguments:

    def test_request_command(self):
        args = cli.parse_arguments(['--json', 'request', 'POST', '/cart/items', '--data', '{"id": 1}'])

        assert args.command == 'request'
        assert args.method == 'POST'
        assert args.path == '/cart/items'
        assert args.data == '{"id": 1}'
        assert args.json is True

    def test_login_command(self):
        args = cli.parse_arguments(['--no-persist', 'login', 'shopper@example.com', '--password-stdin'])

        assert args.email == 'shopper@example.com'
        assert args.password_stdin is True
        assert args.no_persist is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])


class TestPrintResult:

    def test_success(self, capsys):
        response = TransportResponse(200, {'success': True, 'statusCode': 200, 'data': {'id': 1}})

        assert cli.print_result(Success(response), as_json=False) == cli.EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out) == {'id': 1}

    def test_auth_failure(self, capsys):
        code = cli.print_result(DefinitiveFailure(AuthRejectedError("Invalid password")), as_json=False)

        assert code == cli.EXIT_AUTH_FAILED
        assert "Invalid password" in capsys.readouterr().err

    def test_request_failure_json(self, capsys):
        code = cli.print_result(DefinitiveFailure(HTTPStatusError("Not found", 404)), as_json=True)

        assert code == cli.EXIT_REQUEST_FAILED
        assert json.loads(capsys.readouterr().out)['error']['message'] == "Not found"


class TestRunCommand:

    @pytest.mark.asyncio
    async def test_login_reads_password_from_stdin(self, capsys):
        args = cli.parse_arguments(['login', 'shopper@example.com', '--password-stdin'])
        client = Mock()
        client.login = AsyncMock(return_value=Success(TransportResponse(200, {})))

        with patch('sys.stdin', io.StringIO("hunter2\n")):
            code = await cli.run_command(args, client)

        assert code == cli.EXIT_SUCCESS
        client.login.assert_awaited_once_with('shopper@example.com', 'hunter2')
        assert "Signed in as shopper@example.com" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_request_with_invalid_json(self, capsys):
        args = cli.parse_arguments(['request', 'POST', '/cart', '--data', '{not json'])
        client = Mock()
        client.request = AsyncMock()

        code = await cli.run_command(args, client)

        assert code == cli.EXIT_REQUEST_FAILED
        client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_request_sends_body(self):
        args = cli.parse_arguments(['request', 'PATCH', '/cart/items/1', '--data', '{"quantity": 3}'])
        client = Mock()
        client.request = AsyncMock(return_value=Success(TransportResponse(200, None)))

        code = await cli.run_command(args, client)

        assert code == cli.EXIT_SUCCESS
        client.request.assert_awaited_once_with('PATCH', '/cart/items/1', body={'quantity': 3})


class TestMain:

    def test_status_without_credential(self, config_path, capsys):
        code = cli.main(['--config', config_path, '--no-persist',
                         '--base-url', 'http://shop.test/api', 'status'])

        assert code == cli.EXIT_SUCCESS
        assert "http://shop.test/api: not signed in" in capsys.readouterr().out

    def test_invalid_base_url(self, config_path, capsys):
        code = cli.main(['--config', config_path, '--no-persist',
                         '--base-url', 'shop.test', 'status'])

        assert code == cli.EXIT_CONFIG_ERROR
        assert "Configuration error" in capsys.readouterr().err
