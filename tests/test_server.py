"""Caller-channel tests: BridgeServer driven through scripted stdin/stdout."""

import asyncio
import json

from loguru import logger

from codex_bridge.bridge.server import BridgeServer
from codex_bridge.config.schema import BridgeSettings, RuntimeConfig


class ScriptedStdin:
    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()

    def send(self, message) -> None:
        raw = message if isinstance(message, str) else json.dumps(message)
        self.queue.put_nowait(raw.encode("utf-8") + b"\n")

    def close(self) -> None:
        self.queue.put_nowait(b"")

    async def readline(self) -> bytes:
        return await self.queue.get()


class CapturedStdout:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    def write(self, data: bytes) -> None:
        for line in data.decode("utf-8").splitlines():
            self.messages.append(json.loads(line))

    async def drain(self) -> None:
        pass

    def is_closing(self) -> bool:
        return False

    def responses(self) -> dict:
        return {message["id"]: message for message in self.messages if message["type"] == "response"}

    def events(self, kind: str | None = None) -> list[dict]:
        events = [message["event"] for message in self.messages if message["type"] == "event"]
        return [event for event in events if kind is None or event["type"] == kind]

    async def response(self, request_id, timeout_s: float = 15.0) -> dict:
        deadline = asyncio.get_running_loop().time() + timeout_s
        while asyncio.get_running_loop().time() < deadline:
            if request_id in self.responses():
                return self.responses()[request_id]
            await asyncio.sleep(0.01)
        raise AssertionError(f"no response for request {request_id}")


def _request(request_id, method, params=None) -> dict:
    return {"type": "request", "id": request_id, "method": method, "params": params or {}}


def _serve(scenario, binary: str = "auto"):
    """Run ``scenario(stdin, stdout, server)`` next to a live BridgeServer."""
    settings = BridgeSettings(defaults=RuntimeConfig(binary=binary), request_timeout_s=10, turn_timeout_s=20)

    async def main():
        stdin, stdout = ScriptedStdin(), CapturedStdout()
        server = BridgeServer(settings, readline=stdin.readline, stream=stdout)
        serving = asyncio.create_task(server.run())
        try:
            await scenario(stdin, stdout, server)
        finally:
            stdin.close()
        code = await asyncio.wait_for(serving, 20)
        return code, stdout, server

    return asyncio.run(main())


def test_bridge_announces_ready_and_exits_on_eof():
    async def scenario(stdin, stdout, server):
        await asyncio.sleep(0.05)

    code, stdout, server = _serve(scenario)

    assert code == 0
    ready = stdout.messages[0]
    assert ready["type"] == "event"
    assert ready["event"]["type"] == "bridge.ready"
    assert ready["event"]["timestamp"]
    assert server.state.supervisor.current is None


def test_health_spawns_app_server(fake_app_server):
    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "health"))
        response = await stdout.response(1)
        assert response["ok"] is True
        assert response["result"]["ok"] is True
        assert response["result"]["version"] == 1
        assert response["result"]["runtime"]["generation"] == 1
        stdin.send(_request(2, "shutdown"))
        assert (await stdout.response(2))["result"] == {"ok": True}

    code, _, server = _serve(scenario, fake_app_server)

    assert code == 0
    assert server.state.supervisor.current is None


def test_app_server_stderr_is_logged_not_forwarded_to_the_caller(fake_app_server):
    logged = []
    handler_id = logger.add(logged.append, format="{message}")

    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "health"))
        await stdout.response(1)
        for _ in range(100):
            if any("fake app-server starting" in str(message) for message in logged):
                break
            await asyncio.sleep(0.05)
        stdin.send(_request(2, "shutdown"))
        await stdout.response(2)

    try:
        _, stdout, _ = _serve(scenario, fake_app_server)
    finally:
        logger.remove(handler_id)

    assert any("[app-server] fake app-server starting in normal mode" in str(message) for message in logged)
    assert not any("fake app-server starting" in json.dumps(message) for message in stdout.messages)


def test_unknown_method_is_rejected_without_spawning():
    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "thread.fork"))
        response = await stdout.response(1)
        assert response == {"type": "response", "id": 1, "ok": False, "error": "unsupported method: thread.fork"}
        assert server.state.supervisor.generation == 0

    _serve(scenario)


def test_bad_output_schema_is_rejected_without_spawning():
    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "turn.run", {"threadId": "thread-1", "inputItems": [], "outputSchema": "nope"}))
        response = await stdout.response(1)
        assert response["ok"] is False
        assert response["error"] == "outputSchema must be a plain JSON object"
        assert server.state.supervisor.generation == 0

    _serve(scenario)


def test_malformed_lines_produce_errors_not_crashes():
    async def scenario(stdin, stdout, server):
        stdin.send("{this is not json")
        stdin.send({"type": "event", "id": 7})
        stdin.send({"type": "request", "id": "abc", "method": "health"})
        stdin.send({"type": "request", "id": 8, "method": ""})
        stdin.send(_request(9, "config.get"))
        await stdout.response(9)

    _, stdout, _ = _serve(scenario)

    errors = stdout.events("error")
    assert errors[0]["message"].startswith("failed to parse bridge request")
    assert errors[1]["message"] == "invalid bridge message type"
    responses = [message for message in stdout.messages if message["type"] == "response"]
    assert responses[0]["id"] is None and responses[0]["ok"] is False
    assert responses[1] == {"type": "response", "id": 7, "ok": False, "error": "invalid bridge message type"}
    assert responses[2] == {"type": "response", "id": None, "ok": False, "error": "invalid request shape"}
    assert responses[3] == {"type": "response", "id": 8, "ok": False, "error": "invalid request shape"}
    assert responses[4]["ok"] is True
    assert responses[4]["result"]["approvalPolicy"] == "on-request"


def test_config_round_trip():
    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "config.set", {"patch": {"model": "gpt-5", "reasoning": "  "}}))
        stdin.send(_request(2, "config.get"))
        await stdout.response(2)

    _, stdout, _ = _serve(scenario)

    responses = stdout.responses()
    assert responses[1]["result"]["model"] == "gpt-5"
    assert responses[2]["result"]["model"] == "gpt-5"
    assert responses[2]["result"]["reasoning"] == "default"


def test_full_turn_streams_events_before_the_response(fake_app_server):
    async def scenario(stdin, stdout, server):
        stdin.send(_request(1, "thread.open", {"workspace": "/tmp"}))
        opened = await stdout.response(1)
        assert opened["result"] == {"threadId": "thread-1", "codexThreadId": "codex-thread-1", "workspace": "/tmp"}

        stdin.send(_request(2, "thread.open", {"threadId": "thread-1"}))
        assert (await stdout.response(2))["result"] == opened["result"]

        stdin.send(
            _request(3, "turn.run", {"threadId": "thread-1", "inputItems": [{"type": "mention", "path": "src/main.rs"}]})
        )
        turn = await stdout.response(3)
        assert turn["ok"] is True
        assert turn["result"]["finalResponse"] == "Hello"
        assert turn["result"]["status"] == "completed"
        assert turn["result"]["usage"] == {"input_tokens": 10, "cached_input_tokens": 2, "output_tokens": 5}

        stdin.send(_request(4, "turn.run", {"threadId": "thread-1", "inputItems": [{"type": "text", "text": "fail"}]}))
        failed = await stdout.response(4)
        assert failed["ok"] is False
        assert failed["error"] == "model refused"

        stdin.send(_request(5, "shutdown"))
        await stdout.response(5)

    _, stdout, _ = _serve(scenario, fake_app_server)

    updates = [event["item"]["text"] for event in stdout.events("item.updated")]
    assert updates == ["Hel", "Hello"]
    commands = [event["item"] for event in stdout.events("item.completed") if event["item"]["type"] == "command_execution"]
    assert commands[0]["aggregated_output"] == "decline"
    assert commands[0]["status"] == "declined"

    kinds = [message.get("event", {}).get("type") or f"response:{message.get('id')}" for message in stdout.messages]
    assert kinds.index("turn.completed") < kinds.index("response:3")
    assert "turn.failed" in kinds
