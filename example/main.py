import asyncio
import os

from dotenv import load_dotenv
from melinda_rest_api_client.errors import MelindaApiError
from melinda_rest_api_client.models import ClientConfig, PollingConfig, QueueItemState
from melinda_rest_api_client.poller import BulkPoller
from melinda_rest_api_client.record_client import MelindaRecordClient
from melinda_server import MelindaServer

RECORD = {
    "leader": "00000cam^a22003374i^4500",
    "fields": [{"tag": "245", "ind1": "1", "ind2": "0", "subfields": [{"code": "a", "value": "Example"}]}],
}


async def state_changed(state):
    print(f"Bulk {state.correlation_id} is {state.state_name} ({state.modification_time})")


async def main():
    load_dotenv()

    server = None
    if "MELINDA_API_URL" in os.environ:
        config = ClientConfig.from_env()
    else:
        PORT = 8000
        server = MelindaServer()
        await server.start(port=PORT)
        print(f"Mock Melinda started on http://localhost:{PORT}")
        config = ClientConfig(
            base_url=f"http://localhost:{PORT}", username="foo", password="bar"
        )

    try:
        async with MelindaRecordClient(config) as client:
            created = await client.create(RECORD, {"noop": 1})
            print(f"Create (noop): {created}")

            bulk = await client.create_bulk_no_stream("application/json", {"pOldNew": "NEW"})
            correlation_id = bulk["correlationId"]
            await client.send_record_to_bulk(RECORD, correlation_id)
            await client.set_bulk_status(correlation_id, QueueItemState.PENDING_VALIDATION)

            if server is not None:
                server.state_sequences[correlation_id] = [
                    ("PENDING_VALIDATION", "t0"),
                    ("VALIDATING", "t1"),
                    ("DONE", "t2"),
                ]

            poller = BulkPoller(
                client,
                correlation_id,
                PollingConfig(interval=1.0, backoff_factor=2.0, max_interval=10.0),
                on_state_change=state_changed,
            )
            metadata = await asyncio.wait_for(poller.poll_until_complete(), timeout=600)
            print(f"Final bulk metadata: {metadata}")
    except asyncio.TimeoutError:
        print("Polling timed out")
    except MelindaApiError as e:
        print(f"Error occurred: {e}")
    finally:
        if server is not None:
            await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
