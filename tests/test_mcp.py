import inspect

import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from core.auth import create_api_key
from core.context import RequestContext, reset_current_request_context, set_current_request_context
from core.errors import UnauthorizedError
from core.mcp import REGISTERED_TOOLS, MCPAuthMiddleware, MCPRouteNormalizerASGI, get_current_context
from core.mcp import server as mcp_server
from core.services import dispatcher
from tests.conftest import fake_embedding


def _whoami(request):
    ctx = get_current_context()
    return JSONResponse({
        "owner_id": ctx.owner_id,
        "default_override": ctx.default_override,
        "source": ctx.source,
    })


@pytest.fixture
def guarded_client(server_db):
    app = Starlette(routes=[Route("/whoami", _whoami, methods=["GET"])])
    return TestClient(MCPAuthMiddleware(app, session_factory=server_db))


@pytest.fixture
def token(db_session):
    token, _ = create_api_key(db_session, owner_id="mcp-owner", root_namespace="legacy")
    return token


def test_middleware_rejects_missing_key(guarded_client):
    response = guarded_client.get("/whoami")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "Valid API key required"}


def test_middleware_sets_request_context(guarded_client, token):
    response = guarded_client.get(
        "/whoami",
        headers={"Authorization": f"Bearer {token}", "x-namespace-default": "legacy/ABC"},
    )
    assert response.status_code == 200
    assert response.json() == {"owner_id": "mcp-owner", "default_override": "legacy/ABC", "source": "mcp"}


def test_context_is_required_outside_requests():
    with pytest.raises(UnauthorizedError):
        get_current_context()


def test_every_operation_has_a_tool():
    assert sorted(REGISTERED_TOOLS.values()) == dispatcher.available_tools()


def test_tools_forward_to_dispatcher(server_db, context, monkeypatch):
    monkeypatch.setattr(dispatcher, "_default_embed", fake_embedding)
    ctx_token = set_current_request_context(context)
    try:
        saved = mcp_server.memory_save(namespace="notes", content="from mcp")
        assert saved["memo"]["namespace"] == "legacy/DEF/notes"
        memo_id = saved["memo"]["memoId"]

        prop = mcp_server.memory_property(namespace="notes", memoId=memo_id, name="k", value="v")
        assert prop["property"]["action"] == "created"
        prop = mcp_server.memory_property(namespace="notes", memoId=memo_id, name="k", value=None)
        assert prop["property"]["action"] == "deleted"

        missing = mcp_server.memory_delete(namespace="notes", memoId="7f8ed3a4-31a4-4c55-b4a4-1d2f0f6a9c11")
        assert missing["status"] == 404
        assert missing["error"] == "memo_not_found"
    finally:
        reset_current_request_context(ctx_token)


def test_route_normalizer_adds_trailing_slash():
    seen = []

    async def app(scope, receive, send):
        seen.append(scope["path"])
        await JSONResponse({"ok": True})(scope, receive, send)

    client = TestClient(MCPRouteNormalizerASGI(app))
    client.get("/mcp")
    client.get("/mcp/")
    client.get("/other")
    assert seen == ["/mcp/", "/mcp/", "/other"]


def test_request_context_override_is_trimmed(context):
    assert isinstance(context.with_default_override(" legacy/x "), RequestContext)
    assert context.with_default_override(" legacy/x ").default_override == "legacy/x"


def test_property_tool_requires_value(server_db, context, monkeypatch):
    value_param = inspect.signature(mcp_server.memory_property).parameters["value"]
    assert value_param.default is inspect.Parameter.empty

    monkeypatch.setattr(dispatcher, "_default_embed", fake_embedding)
    ctx_token = set_current_request_context(context)
    try:
        saved = mcp_server.memory_save(namespace="notes", content="keep me", metadata={"keep": "me"})
        memo_id = saved["memo"]["memoId"]
        with pytest.raises(TypeError):
            mcp_server.memory_property(namespace="notes", memoId=memo_id, name="keep")
        listed = mcp_server.memory_property_list(namespace="notes", memoId=memo_id)
        assert listed["properties"] == [{"name": "keep", "value": "me"}]
    finally:
        reset_current_request_context(ctx_token)
