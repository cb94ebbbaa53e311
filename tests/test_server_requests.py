from codex_bridge import server_requests
from codex_bridge.server_requests import DYNAMIC_TOOL_MESSAGE, build_server_response


def test_approvals_are_declined():
    assert build_server_response(1, "item/commandExecution/requestApproval", {"command": "rm -rf /"}) == {
        "id": 1,
        "result": {"decision": "decline"},
    }
    assert build_server_response(2, "item/fileChange/requestApproval", {})["result"] == {"decision": "decline"}


def test_legacy_approvals_are_denied():
    assert build_server_response("a", "execCommandApproval", {})["result"] == {"decision": "denied"}
    assert build_server_response("b", "applyPatchApproval", None)["result"] == {"decision": "denied"}


def test_user_input_picks_first_option():
    params = {
        "questions": [
            {"id": "q1", "options": [{"label": "Yes"}, {"label": "No"}]},
            {"id": "q2", "options": []},
            {"id": "q3"},
            {"options": [{"label": "orphan"}]},
        ]
    }

    assert build_server_response(3, "item/tool/requestUserInput", params)["result"] == {
        "answers": {"q1": {"answers": ["Yes"]}, "q2": {"answers": []}, "q3": {"answers": []}}
    }


def test_dynamic_tool_calls_fail():
    assert build_server_response(4, "item/tool/call", {"tool": "x"})["result"] == {
        "success": False,
        "contentItems": [{"type": "inputText", "text": DYNAMIC_TOOL_MESSAGE}],
    }


def test_token_refresh_and_unknown_methods_are_unsupported():
    refresh = build_server_response(5, "account/chatgptAuthTokens/refresh", {})
    unknown = build_server_response(6, "item/somethingNew", {})

    assert refresh["error"]["code"] == -32601
    assert "not supported" in refresh["error"]["message"]
    assert unknown == {"id": 6, "error": {"code": -32601, "message": "unsupported server request: item/somethingNew"}}


def test_builder_exceptions_become_internal_errors(monkeypatch):
    def explode(params):
        raise ValueError("bad params")

    monkeypatch.setitem(server_requests._RESPONDERS, "item/tool/call", explode)

    assert build_server_response(7, "item/tool/call", {}) == {
        "id": 7,
        "error": {"code": -32603, "message": "bad params"},
    }
