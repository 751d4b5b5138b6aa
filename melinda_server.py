import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import web
from loguru import logger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MelindaServer:
    """In-process stand-in for the Melinda REST API

    Bulk state responses can be scripted per correlation id with state_sequences;
    each poll consumes one entry and the last entry repeats. forced_responses maps
    a request path to a (status, json body) pair returned instead of the real handler.
    """

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.bulks: Dict[str, Dict[str, Any]] = {}
        self.state_sequences: Dict[str, List[Tuple[str, str]]] = {}
        self.state_fetches: Dict[str, int] = {}
        self.logs: List[Dict[str, Any]] = []
        self.forced_responses: Dict[str, Tuple[int, Optional[Any]]] = {}
        self.requests: List[Dict[str, Any]] = []
        self.next_record_id = 1
        self.runner: Optional[web.AppRunner] = None
        self.logger = logger

        @web.middleware
        async def record_request(request: web.Request, handler):
            body = await request.read()
            self.requests.append(
                {
                    "method": request.method,
                    "path": request.path,
                    "query_string": request.query_string,
                    "query": dict(request.query),
                    "headers": dict(request.headers),
                    "body": body,
                }
            )
            forced = self.forced_responses.get(request.path)
            if forced is not None:
                status, data = forced
                self.logger.info(f"Returning forced status {status} for {request.path}")
                if data is None:
                    return web.Response(status=status)
                return web.json_response(data, status=status)
            return await handler(request)

        self.app = web.Application(middlewares=[record_request])
        self.app.router.add_get("/logs/catalogers", self.handle_get_catalogers)
        self.app.router.add_get("/logs/list", self.handle_get_logs_list)
        self.app.router.add_get("/logs", self.handle_get_log)
        self.app.router.add_put("/logs/{correlation_id}", self.handle_protect_log)
        self.app.router.add_delete("/logs/{correlation_id}", self.handle_remove_log)
        self.app.router.add_post("/bulk/", self.handle_create_bulk)
        self.app.router.add_get("/bulk/", self.handle_read_bulk)
        self.app.router.add_get("/bulk/state/{correlation_id}", self.handle_get_bulk_state)
        self.app.router.add_put("/bulk/state/{correlation_id}", self.handle_set_bulk_state)
        self.app.router.add_post("/bulk/record/{correlation_id}", self.handle_bulk_record)
        self.app.router.add_post("/fix/{record_id}", self.handle_restore)
        self.app.router.add_post("/", self.handle_create)
        self.app.router.add_get("/{record_id}", self.handle_read)
        self.app.router.add_post("/{record_id}", self.handle_update)

    def add_bulk(self, correlation_id: str, state: str = "IN_QUEUE", **extra) -> Dict[str, Any]:
        bulk = {
            "correlationId": correlation_id,
            "queueItemState": state,
            "creationTime": _now(),
            "modificationTime": _now(),
            "handledIds": [],
            "records": [],
        }
        bulk.update(extra)
        self.bulks[correlation_id] = bulk
        return bulk

    # Records

    async def handle_read(self, request: web.Request) -> web.Response:
        record = self.records.get(request.match_info["record_id"])
        if record is None:
            return web.Response(status=404)
        return web.json_response(record)

    async def handle_create(self, request: web.Request) -> web.Response:
        record = await request.json()
        if request.query.get("unique") == "1" and record in self.records.values():
            return web.json_response({"message": "Duplicate record"}, status=409)
        record_id = f"{self.next_record_id:09d}"
        self.next_record_id += 1
        if request.query.get("noop") != "1":
            self.records[record_id] = record
        self.logger.info(f"Created record {record_id}")
        return web.Response(status=201, headers={"Record-ID": record_id})

    async def handle_update(self, request: web.Request) -> web.Response:
        record_id = request.match_info["record_id"]
        if record_id not in self.records:
            return web.Response(status=404)
        record = await request.json()
        if request.query.get("noop") != "1":
            self.records[record_id] = record
        return web.json_response({"recordId": record_id, "operation": "UPDATE"})

    async def handle_restore(self, request: web.Request) -> web.Response:
        record_id = request.match_info["record_id"]
        record = await request.json()
        if request.query.get("noop") != "1":
            self.records[record_id] = record
        return web.json_response({"recordId": record_id, "operation": "FIX"})

    # Bulk

    async def handle_create_bulk(self, request: web.Request) -> web.Response:
        if request.content_type not in ("application/json", "application/marc", "application/xml", "application/alephseq"):
            return web.json_response({"message": "Invalid content type"}, status=415)
        correlation_id = str(uuid.uuid4())
        no_stream = request.query.get("noStream") == "1"
        body = await request.read()
        bulk = self.add_bulk(
            correlation_id,
            state="WAITING_FOR_RECORDS" if no_stream else "PENDING_QUEUING",
            contentType=request.content_type,
            operationSettings=dict(request.query),
            size=len(body),
        )
        return web.json_response({"value": bulk})

    async def handle_read_bulk(self, request: web.Request) -> web.Response:
        bulks = list(self.bulks.values())
        correlation_id = request.query.get("correlationId")
        if correlation_id is not None:
            bulks = [bulk for bulk in bulks if bulk["correlationId"] == correlation_id]
        state = request.query.get("queueItemState")
        if state is not None:
            bulks = [bulk for bulk in bulks if bulk["queueItemState"] == state]
        return web.json_response(bulks)

    async def handle_get_bulk_state(self, request: web.Request) -> web.Response:
        correlation_id = request.match_info["correlation_id"]
        self.state_fetches[correlation_id] = self.state_fetches.get(correlation_id, 0) + 1

        sequence = self.state_sequences.get(correlation_id)
        if sequence:
            state, modification_time = sequence.pop(0) if len(sequence) > 1 else sequence[0]
            if correlation_id in self.bulks:
                self.bulks[correlation_id]["queueItemState"] = state
            return web.json_response(
                {
                    "correlationId": correlation_id,
                    "queueItemState": state,
                    "modificationTime": modification_time,
                }
            )

        bulk = self.bulks.get(correlation_id)
        if bulk is None:
            return web.Response(status=404)
        return web.json_response(
            {
                "correlationId": correlation_id,
                "queueItemState": bulk["queueItemState"],
                "modificationTime": bulk["modificationTime"],
            }
        )

    async def handle_set_bulk_state(self, request: web.Request) -> web.Response:
        bulk = self.bulks.get(request.match_info["correlation_id"])
        if bulk is None:
            return web.Response(status=404)
        bulk["queueItemState"] = request.query["status"]
        bulk["modificationTime"] = _now()
        return web.json_response(bulk)

    async def handle_bulk_record(self, request: web.Request) -> web.Response:
        bulk = self.bulks.get(request.match_info["correlation_id"])
        if bulk is None:
            return web.Response(status=404)
        if bulk["queueItemState"] != "WAITING_FOR_RECORDS":
            return web.json_response({"message": "Bulk is not waiting for records"}, status=409)
        bulk["records"].append(json.loads(await request.text()))
        bulk["modificationTime"] = _now()
        return web.json_response({"value": {"correlationId": bulk["correlationId"], "records": len(bulk["records"])}})

    # Logs

    async def handle_get_catalogers(self, request: web.Request) -> web.Response:
        return web.json_response(sorted({log["cataloger"] for log in self.logs}))

    async def handle_get_log(self, request: web.Request) -> web.Response:
        logs = self.logs
        for key in ("correlationId", "logItemType"):
            if key in request.query:
                logs = [log for log in logs if log.get(key) == request.query[key]]
        return web.json_response(logs)

    async def handle_get_logs_list(self, request: web.Request) -> web.Response:
        logs = self.logs
        if "logItemTypes" in request.query:
            types = request.query["logItemTypes"].split(",")
            logs = [log for log in logs if log["logItemType"] in types]
        if "catalogers" in request.query:
            catalogers = request.query["catalogers"].split(",")
            logs = [log for log in logs if log["cataloger"] in catalogers]
        if request.query.get("expanded") == "1":
            return web.json_response(logs)
        return web.json_response(sorted({log["correlationId"] for log in logs}))

    async def handle_protect_log(self, request: web.Request) -> web.Response:
        correlation_id = request.match_info["correlation_id"]
        matched = [log for log in self.logs if log["correlationId"] == correlation_id]
        if not matched:
            return web.Response(status=404)
        for log in matched:
            log["protected"] = not log.get("protected", False)
        return web.json_response({"status": 200, "payload": f"Protected {len(matched)} log(s)"})

    async def handle_remove_log(self, request: web.Request) -> web.Response:
        correlation_id = request.match_info["correlation_id"]
        matched = [log for log in self.logs if log["correlationId"] == correlation_id]
        if not matched:
            return web.Response(status=404)
        force = request.query.get("force") == "1"
        if any(log.get("protected") for log in matched) and not force:
            return web.Response(status=403)
        self.logs = [log for log in self.logs if log["correlationId"] != correlation_id]
        return web.json_response({"status": 200, "payload": f"Removed {len(matched)} log(s)"})

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
