"""
Tests for the authenticated client.

These tests drive AuthenticatedClient against a scripted transport and
check the credential refresh protocol end to end: a single renewal for a
burst of rejected calls, one replay per call, shared failures, and the
endpoints that must never trigger a renewal.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from shopclient.api_client import AuthenticatedClient
from shopclient.transport import AiohttpTransport
from shopshared.exceptions import (
    AuthRejectedError, ErrorCode, HTTPStatusError, NetworkError, RefreshFailedError,
    RetryExhaustedError
)
from shopshared.models import ApiRequest, DefinitiveFailure, Success
from tests.helpers.fake_transport import envelope, make_token_server, unauthorized


class TestConcurrentRefresh:
    """A burst of rejected calls shares one renewal."""

    @pytest.mark.asyncio
    async def test_concurrent_unauthorized_calls_refresh_once(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        results = await asyncio.gather(*[client.get(f"/orders/{i}") for i in range(5)])

        assert all(isinstance(result, Success) for result in results)
        assert len(transport.calls_to('/auth/refresh')) == 1
        assert client.refresh_coordinator.refresh_count == 1

        replays = [call for call in transport.api_calls()
                   if call.headers.get('Authorization') == "Bearer tok2"]
        assert len(replays) == 5
        assert client.credential_store.get() == "tok2"

    @pytest.mark.asyncio
    async def test_each_call_is_sent_at_most_twice(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        await asyncio.gather(*[client.get(f"/orders/{i}") for i in range(3)])

        for i in range(3):
            assert len(transport.calls_to(f"/orders/{i}")) == 2

    @pytest.mark.asyncio
    async def test_later_calls_use_refreshed_credential(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        await client.get("/users/me")
        result = await client.get("/cart")

        assert isinstance(result, Success)
        assert transport.calls_to("/cart")[0].headers['Authorization'] == "Bearer tok2"
        assert len(transport.calls_to('/auth/refresh')) == 1

    @pytest.mark.asyncio
    async def test_renewal_call_carries_no_bearer(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        await client.get("/users/me")

        refresh_call = transport.calls_to('/auth/refresh')[0]
        assert refresh_call.method == 'POST'
        assert 'Authorization' not in refresh_call.headers

    @pytest.mark.asyncio
    async def test_replay_keeps_method_body_and_params(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        result = await client.post("/cart/items", body={'productId': 7, 'quantity': 2})

        assert isinstance(result, Success)
        first, replay = transport.calls_to("/cart/items")
        assert replay.method == first.method == 'POST'
        assert replay.body == first.body == {'productId': 7, 'quantity': 2}
        assert first.headers['Authorization'] == "Bearer tok1"
        assert replay.headers['Authorization'] == "Bearer tok2"


class TestRefreshFailure:
    """A failed renewal ends the session for every waiting caller."""

    @pytest.mark.asyncio
    async def test_rejected_renewal_fails_all_callers(self, make_client):
        client, transport = make_client(
            make_token_server("tok2", unauthorized("Refresh token expired"))
        )
        ended = Mock()
        client.add_session_ended_callback(ended)

        results = await asyncio.gather(*[client.get(f"/orders/{i}") for i in range(4)])

        assert all(isinstance(result, DefinitiveFailure) for result in results)
        errors = [result.error for result in results]
        assert all(isinstance(error, RefreshFailedError) for error in errors)
        assert all(error is errors[0] for error in errors)
        assert errors[0].message == "Refresh token expired"

        assert client.credential_store.get() is None
        assert not client.is_authenticated()
        assert len(transport.calls_to('/auth/refresh')) == 1
        ended.assert_called_once_with(errors[0])

    @pytest.mark.asyncio
    async def test_rejected_calls_are_not_replayed(self, make_client):
        client, transport = make_client(make_token_server("tok2", unauthorized()))

        await asyncio.gather(*[client.get(f"/orders/{i}") for i in range(3)])

        for i in range(3):
            assert len(transport.calls_to(f"/orders/{i}")) == 1

    @pytest.mark.asyncio
    async def test_renewal_timeout(self, make_client):
        client, transport = make_client(
            make_token_server("tok2", "tok2", refresh_delay=1.0),
            refresh_timeout=0.05
        )
        loop = asyncio.get_running_loop()
        started = loop.time()

        results = await asyncio.gather(client.get("/orders"), client.get("/cart"))

        assert loop.time() - started < 0.5
        for result in results:
            assert isinstance(result, DefinitiveFailure)
            assert result.error.error_code == ErrorCode.AUTH_REFRESH_TIMEOUT
        assert client.credential_store.get() is None

    @pytest.mark.asyncio
    async def test_network_error_during_renewal(self, make_client):
        client, _ = make_client(make_token_server("tok2", NetworkError("connection reset")))

        result = await client.get("/orders")

        assert isinstance(result, DefinitiveFailure)
        assert isinstance(result.error, RefreshFailedError)
        assert result.error.error_code == ErrorCode.AUTH_REFRESH_FAILED
        assert "connection reset" in result.error.message

    @pytest.mark.asyncio
    async def test_renewal_without_credential_in_body(self, make_client):
        client, _ = make_client(make_token_server("tok2", envelope({'user': {'id': 1}})))

        result = await client.get("/orders")

        assert isinstance(result, DefinitiveFailure)
        assert isinstance(result.error, RefreshFailedError)

    @pytest.mark.asyncio
    async def test_session_ended_callback_errors_are_contained(self, make_client):
        client, _ = make_client(make_token_server("tok2", unauthorized()))
        client.add_session_ended_callback(Mock(side_effect=RuntimeError("ui gone")))
        second = Mock()
        client.add_session_ended_callback(second)

        result = await client.get("/orders")

        assert isinstance(result.error, RefreshFailedError)
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_each_failed_renewal_notifies_once(self, make_client):
        client, _ = make_client(make_token_server("tok2", unauthorized()))
        ended = Mock()
        client.add_session_ended_callback(ended)

        await client.get("/orders")
        await client.get("/orders")

        assert ended.call_count == 2


class TestRetryLimits:
    """Calls are replayed at most once and never for excluded endpoints."""

    @pytest.mark.asyncio
    async def test_still_unauthorized_after_refresh(self, make_client):
        client, transport = make_client(make_token_server("never-valid", "tok2"))

        result = await client.get("/admin/reports")

        assert isinstance(result, DefinitiveFailure)
        assert isinstance(result.error, RetryExhaustedError)
        assert len(transport.calls_to("/admin/reports")) == 2
        assert len(transport.calls_to('/auth/refresh')) == 1
        assert client.credential_store.get() == "tok2"

    @pytest.mark.asyncio
    async def test_excluded_endpoint_does_not_refresh(self, make_client):
        handler = Mock(return_value=unauthorized("Invalid email or password"))
        client, transport = make_client(handler)
        client.refresh_coordinator.refresh_or_wait = AsyncMock()

        result = await client.login("shopper@example.com", "wrong")

        assert isinstance(result, DefinitiveFailure)
        assert isinstance(result.error, AuthRejectedError)
        assert result.error.message == "Invalid email or password"
        client.refresh_coordinator.refresh_or_wait.assert_not_called()
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "/auth/register",
        "/auth/refresh",
        "/auth/forgot-password",
        "/auth/reset-password",
        "/auth/account/recover?token=abc",
    ])
    async def test_default_excluded_endpoints(self, make_client, path):
        client, transport = make_client(Mock(return_value=unauthorized()))

        result = await client.post(path, body={})

        assert isinstance(result.error, AuthRejectedError)
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_custom_excluded_endpoints(self, make_client):
        client, transport = make_client(
            make_token_server("tok2", "tok2"),
            excluded_endpoints=['/public/']
        )

        result = await client.get("/public/catalog")

        assert isinstance(result.error, AuthRejectedError)
        assert transport.calls_to('/auth/refresh') == []


class TestNonAuthFailures:
    """Failures other than 401 pass through untouched."""

    @pytest.mark.asyncio
    async def test_network_error_does_not_refresh(self, make_client):
        def handler(call):
            raise NetworkError("Cannot connect", error_code=ErrorCode.NETWORK_CONNECTION_FAILED)

        client, transport = make_client(handler)

        result = await client.get("/orders")

        assert isinstance(result, DefinitiveFailure)
        assert isinstance(result.error, NetworkError)
        assert transport.calls_to('/auth/refresh') == []
        assert client.credential_store.get() == "tok1"

    @pytest.mark.asyncio
    async def test_server_error_uses_backend_message(self, make_client):
        client, transport = make_client(
            Mock(return_value=envelope(None, status=500, message="Database unavailable"))
        )

        result = await client.get("/products")

        assert isinstance(result.error, HTTPStatusError)
        assert result.error.status == 500
        assert result.error.message == "Database unavailable"
        assert result.error.error_code == ErrorCode.HTTP_SERVER_ERROR
        assert transport.calls_to('/auth/refresh') == []

    @pytest.mark.asyncio
    async def test_forbidden_is_not_a_refresh_trigger(self, make_client):
        client, transport = make_client(
            Mock(return_value=envelope(None, status=403, message=["Admins only"]))
        )

        result = await client.delete("/products/3")

        assert result.error.status == 403
        assert result.error.message == "Admins only"
        assert transport.calls_to('/auth/refresh') == []

    @pytest.mark.asyncio
    async def test_invalid_method_is_reported(self, make_client):
        client, transport = make_client(Mock())

        result = await client.request("TRACE", "/orders")

        assert isinstance(result, DefinitiveFailure)
        assert result.error.error_code == ErrorCode.VALIDATION_INVALID_INPUT
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failure(self, make_client):
        client, _ = make_client(Mock(side_effect=KeyError("boom")))

        result = await client.send(ApiRequest('GET', '/orders'))

        assert isinstance(result, DefinitiveFailure)
        assert result.error.error_code == ErrorCode.INTERNAL_UNEXPECTED_ERROR

    @pytest.mark.asyncio
    async def test_no_credential_sends_without_authorization(self, make_client):
        client, transport = make_client(Mock(return_value=envelope([])), initial_token=None)

        result = await client.get("/products")

        assert isinstance(result, Success)
        assert 'Authorization' not in transport.calls[0].headers


class TestSessionLifecycle:
    """Sign-in, sign-out and explicit refresh."""

    @pytest.mark.asyncio
    async def test_login_stores_credential(self, make_client):
        def handler(call):
            if call.url.endswith('/auth/login'):
                return envelope({'access_token': 'tok9', 'user': {'email': 'shopper@example.com'}})
            return envelope({'ok': True})

        client, transport = make_client(handler, initial_token=None)

        result = await client.login("shopper@example.com", "secret")

        assert isinstance(result, Success)
        assert client.credential_store.get() == "tok9"
        assert transport.calls[0].body == {'email': 'shopper@example.com', 'password': 'secret'}

        await client.get("/users/me")
        assert transport.calls_to("/users/me")[0].headers['Authorization'] == "Bearer tok9"

    @pytest.mark.asyncio
    async def test_login_without_credential_fails(self, make_client):
        client, _ = make_client(Mock(return_value=envelope({'user': {}})), initial_token=None)

        result = await client.login("shopper@example.com", "secret")

        assert isinstance(result, DefinitiveFailure)
        assert result.error.error_code == ErrorCode.AUTH_LOGIN_FAILED
        assert client.credential_store.get() is None

    @pytest.mark.asyncio
    async def test_logout_clears_credential(self, make_client):
        client, transport = make_client(Mock(return_value=envelope(None)))

        result = await client.logout()

        assert isinstance(result, Success)
        assert transport.calls[0].url.endswith('/auth/logout')
        assert client.credential_store.get() is None

    @pytest.mark.asyncio
    async def test_logout_clears_credential_when_server_fails(self, make_client):
        client, _ = make_client(Mock(return_value=envelope(None, status=500)))

        result = await client.logout()

        assert isinstance(result, DefinitiveFailure)
        assert not client.is_authenticated()

    @pytest.mark.asyncio
    async def test_explicit_refresh(self, make_client):
        client, transport = make_client(make_token_server("tok2", "tok2"))

        result = await client.refresh()

        assert isinstance(result, Success)
        assert result.response.payload == {'access_token': 'tok2'}
        assert client.credential_store.get() == "tok2"

    @pytest.mark.asyncio
    async def test_explicit_refresh_failure(self, make_client):
        client, _ = make_client(make_token_server("tok2", unauthorized()))
        ended = Mock()
        client.add_session_ended_callback(ended)

        result = await client.refresh()

        assert isinstance(result.error, RefreshFailedError)
        ended.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_does_not_close_injected_transport(self, make_client):
        client, transport = make_client(Mock())

        async with client:
            pass

        assert transport.closed is False


class TestAiohttpIntegration:
    """Renewal ticket carried by the transport's cookie jar."""

    @staticmethod
    def _make_app(seen_cookies):
        async def login(request):
            response = web.json_response({'success': True, 'statusCode': 200,
                                          'data': {'access_token': 'tok1'}})
            response.set_cookie('refresh_token', 'ticket-1', httponly=True)
            return response

        async def refresh(request):
            seen_cookies.append(request.cookies.get('refresh_token'))
            if request.cookies.get('refresh_token') != 'ticket-1':
                return web.json_response({'success': False, 'statusCode': 401,
                                          'message': 'Missing refresh token'}, status=401)
            return web.json_response({'success': True, 'statusCode': 200,
                                      'data': {'accessToken': 'tok2'}})

        async def orders(request):
            if request.headers.get('Authorization') != 'Bearer tok2':
                return web.json_response({'success': False, 'statusCode': 401,
                                          'message': 'Token expired'}, status=401)
            return web.json_response({'success': True, 'statusCode': 200,
                                      'data': [{'id': 1}]})

        app = web.Application()
        app.router.add_post('/auth/login', login)
        app.router.add_post('/auth/refresh', refresh)
        app.router.add_get('/orders', orders)
        return app

    @pytest.mark.asyncio
    async def test_refresh_over_http_with_cookie(self):
        seen_cookies = []

        async with TestServer(self._make_app(seen_cookies)) as server:
            base_url = str(server.make_url('/')).rstrip('/')
            async with AuthenticatedClient(base_url, transport=AiohttpTransport(timeout=5.0)) as client:
                login = await client.login("shopper@example.com", "secret")
                assert isinstance(login, Success)

                first = await client.get('/orders')
                second = await client.get('/orders')
                await client.transport.close()

        assert isinstance(first, Success)
        assert isinstance(second, Success)
        assert first.response.payload == [{'id': 1}]
        assert seen_cookies == ['ticket-1']
