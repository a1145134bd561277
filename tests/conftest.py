from typing import Optional

import pytest

from shopclient.api_client import AuthenticatedClient
from tests.helpers.fake_transport import BASE_URL, FakeTransport


@pytest.fixture
def make_client():
    """Factory for clients wired to a FakeTransport."""
    def factory(handler, initial_token: Optional[str] = "tok1", **kwargs):
        transport = FakeTransport(handler)
        client = AuthenticatedClient(BASE_URL, transport=transport, **kwargs)
        if initial_token:
            client.credential_store.set(initial_token)
        return client, transport
    return factory
