from typing import AsyncGenerator, Tuple

import pytest
import pytest_asyncio
from melinda_rest_api_client.models import ClientConfig
from melinda_server import MelindaServer

BASE_URL_TEMPLATE = "http://localhost:{}/"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[Tuple[MelindaServer, int], None]:
    """Start and yield a mock Melinda backend on a random port."""
    port = unused_tcp_port_factory()
    server_instance = MelindaServer()
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def config(server) -> ClientConfig:
    """Client configuration pointing at the mock backend."""
    _, port = server
    return ClientConfig(
        base_url=BASE_URL_TEMPLATE.format(port),
        username="foo",
        password="bar",
        user_agent="melinda-rest-api-client tests",
    )


@pytest.fixture
def marc_record() -> dict:
    return {
        "leader": "00000cam^a22003374i^4500",
        "fields": [
            {"tag": "001", "value": "000123456"},
            {
                "tag": "245",
                "ind1": "1",
                "ind2": "0",
                "subfields": [{"code": "a", "value": "Testikirja /"}],
            },
        ],
    }
