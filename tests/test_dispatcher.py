import uuid

import pytest

from core.db import DB
from core.errors import EmbeddingProviderError, ValidationIssue
from core.services.dispatcher import available_tools, decode_cursor, encode_cursor, handle_invocation
from tests.conftest import fake_embedding


@pytest.fixture
def invoke(server_db, context):
    def _invoke(tool, params=None, ctx=None, embed=fake_embedding):
        return handle_invocation(tool, params, ctx or context, embed=embed, session_factory=server_db)
    return _invoke


def _save(invoke, content, namespace="notes", **params):
    response = invoke("memory.save", dict(params, namespace=namespace, content=content))
    assert response.status_code == 200, response.body
    return response.body["memo"]


def test_available_tools():
    assert available_tools() == sorted([
        "memory.save",
        "memory.search",
        "memory.delete",
        "memory.list",
        "memory.list_namespaces",
        "memory.property",
        "memory.property.delete",
        "memory.property.list",
        "memory.relation.save",
        "memory.relation.delete",
        "memory.relation.list",
        "memory.relation.graph",
        "memory.namespace.rename",
    ])


def test_save_and_search_workflow(invoke):
    first = _save(invoke, "apples and pears", metadata={"kind": "fruit"}, title="Fruit")
    _save(invoke, "engines and gears", metadata={"kind": "machine"})
    assert first["namespace"] == "legacy/DEF/notes"
    assert first["version"] == 1
    assert first["title"] == "Fruit"

    response = invoke("memory.search", {"namespace": "notes", "query": "apples and pears"})
    assert response.status_code == 200
    body = response.body
    assert body["rootNamespace"] == "legacy"
    assert body["count"] == 2
    assert body["items"][0]["memoId"] == first["memoId"]
    assert body["items"][0]["score"] == pytest.approx(1.0)

    response = invoke("memory.search", {
        "namespace": "notes",
        "pivotMemoId": first["memoId"],
        "metadataFilter": {"kind": "machine"},
    })
    assert response.status_code == 200
    assert [item["metadata"]["kind"] for item in response.body["items"]] == ["machine"]

    updated = _save(invoke, "apples only", memoId=first["memoId"], metadata={"ripe": True})
    assert updated["version"] == 2
    assert updated["title"] == "Fruit"
    assert updated["metadata"] == {"kind": "fruit", "ripe": True}


def test_save_requires_namespace_and_content(invoke):
    response = invoke("memory.save", {"content": "no namespace"})
    assert response.status_code == 400
    assert response.body["error"] == "invalid_input"
    assert response.body["field"] == "namespace"

    response = invoke("memory.save", {"namespace": "n", "content": ""})
    assert response.body["field"] == "content"


def test_namespace_escape_is_rejected(invoke):
    response = invoke("memory.save", {"namespace": "../../x", "content": "c"})
    assert response.status_code == 400
    assert response.body["error"] == "invalid_namespace"


def test_search_validation_runs_first(invoke):
    response = invoke("memory.search", {"namespace": "n", "distanceMetric": "l2", "minimumSimilarity": 0.5})
    assert response.status_code == 400
    assert response.body["field"] == "minimumSimilarity"

    response = invoke("memory.search", {
        "namespace": "n",
        "query": "q",
        "pivotMemoId": str(uuid.uuid4()),
    })
    assert response.status_code == 400

    response = invoke("memory.search", {"namespace": "n", "pivotMemoId": str(uuid.uuid4())})
    assert response.status_code == 404
    assert response.body["error"] == "pivot_not_found"


def test_wrong_embedding_dimension_is_invalid_input(invoke):
    response = invoke("memory.save", {"namespace": "n", "content": "c"}, embed=lambda text: [0.1, 0.2])
    assert response.status_code == 400
    assert response.body["error"] == "invalid_input"


def test_embedding_outage_is_503(invoke):
    def broken(text):
        raise EmbeddingProviderError("embedding provider unavailable")

    response = invoke("memory.save", {"namespace": "n", "content": "c"}, embed=broken)
    assert response.status_code == 503
    assert response.body["error"] == "embedding_unavailable"


def test_unexpected_errors_are_internal(invoke):
    def exploding(text):
        raise RuntimeError("secret detail")

    response = invoke("memory.save", {"namespace": "n", "content": "c"}, embed=exploding)
    assert response.status_code == 500
    assert response.body == {"error": "internal_error", "message": "Internal server error"}


def test_delete(invoke):
    memo = _save(invoke, "to delete")
    response = invoke("memory.delete", {"namespace": "notes", "memoId": memo["memoId"]})
    assert response.status_code == 200
    assert response.body["deleted"] is True
    assert response.body["memo"]["memoId"] == memo["memoId"]

    response = invoke("memory.delete", {"namespace": "notes", "memoId": memo["memoId"]})
    assert response.status_code == 404
    assert response.body["error"] == "memo_not_found"


def test_list_with_cursor(invoke):
    ids = [_save(invoke, f"memo {i}")["memoId"] for i in range(3)]

    response = invoke("memory.list", {"namespace": "notes", "limit": 2})
    assert [item["memoId"] for item in response.body["items"]] == [ids[2], ids[1]]
    cursor = response.body["nextCursor"]

    response = invoke("memory.list", {"namespace": "notes", "limit": 2, "cursor": cursor})
    assert [item["memoId"] for item in response.body["items"]] == [ids[0]]
    assert "nextCursor" not in response.body

    response = invoke("memory.list", {"namespace": "notes", "cursor": "%%%"})
    assert response.status_code == 400
    assert response.body["field"] == "cursor"


def test_list_orders_by_version_property(invoke):
    old = _save(invoke, "old", metadata={"version": "1.2"})
    new = _save(invoke, "new", metadata={"version": "1.10"})
    response = invoke("memory.list", {"namespace": "notes", "orderBy": "version"})
    assert [item["memoId"] for item in response.body["items"]] == [new["memoId"], old["memoId"]]


def test_list_namespaces(invoke):
    _save(invoke, "base", namespace=".")
    _save(invoke, "deep", namespace="a/b")
    _save(invoke, "sibling", namespace="c")

    response = invoke("memory.list_namespaces", {"depth": 2})
    assert response.status_code == 200
    assert response.body["baseNamespace"] == "legacy/DEF"
    assert response.body["defaultNamespace"] == "legacy/DEF"
    assert response.body["namespaces"] == ["legacy/DEF", "legacy/DEF/a/b", "legacy/DEF/c"]
    assert response.body["count"] == 3

    response = invoke("memory.list_namespaces", {"depth": 6})
    assert response.status_code == 400


def test_default_override(invoke, context):
    overridden = context.with_default_override("legacy/ABC")
    response = invoke("memory.save", {"namespace": "n", "content": "c"}, ctx=overridden)
    assert response.body["memo"]["namespace"] == "legacy/ABC/n"

    response = invoke("memory.list", {"namespace": "n"}, ctx=overridden)
    assert response.body["count"] == 1
    assert invoke("memory.list", {"namespace": "n"}).body["count"] == 0


def test_property_operations(invoke):
    memo = _save(invoke, "props")
    params = {"namespace": "notes", "memoId": memo["memoId"]}

    response = invoke("memory.property", dict(params, name="status", value="open"))
    assert response.status_code == 200
    prop = response.body["property"]
    assert prop == {"name": "status", "value": "open", "previousValue": None, "action": "created", "changed": True}
    assert response.body["memo"]["version"] == 2

    response = invoke("memory.property", dict(params, name="status", value="closed"))
    assert response.body["property"]["previousValue"] == "open"
    assert response.body["property"]["action"] == "updated"

    response = invoke("memory.property.list", params)
    assert response.body["properties"] == [{"name": "status", "value": "closed"}]

    response = invoke("memory.property.delete", dict(params, name="status"))
    assert response.body["property"]["action"] == "deleted"
    assert response.body["property"]["value"] is None

    response = invoke("memory.property", dict(params, name="status"))
    assert response.status_code == 400
    assert response.body["field"] == "value"

    response = invoke("memory.property.list", dict(params, memoId=str(uuid.uuid4())))
    assert response.status_code == 404


def test_relation_operations_and_graph(invoke):
    a = _save(invoke, "a", namespace=".")["memoId"]
    b = _save(invoke, "b", namespace=".")["memoId"]
    c = _save(invoke, "c", namespace=".")["memoId"]

    for source, target in ((a, b), (b, c)):
        response = invoke("memory.relation.save", {
            "sourceMemoId": source,
            "targetMemoId": target,
            "tag": "next",
            "weight": 0.7,
            "reason": "sequence",
        })
        assert response.status_code == 200, response.body
        assert response.body["relation"]["reason"] == "sequence"

    response = invoke("memory.relation.list", {"sourceMemoId": a})
    assert response.body["count"] == 1
    assert {node["memoId"] for node in response.body["nodes"]} == {a, b}

    response = invoke("memory.relation.graph", {"startMemoId": a, "maxDepth": 2})
    assert response.status_code == 200
    edges = response.body["edges"]
    assert [(edge["depth"], edge["path"]) for edge in edges] == [(1, [a, b]), (2, [a, b, c])]
    assert all(edge["direction"] == "forward" for edge in edges)
    assert [node["memoId"] for node in response.body["nodes"]] == [a, b, c]

    response = invoke("memory.relation.graph", {"startMemoId": b, "maxDepth": 1, "direction": "both"})
    assert sorted(edge["direction"] for edge in response.body["edges"]) == ["backward", "forward"]

    response = invoke("memory.relation.graph", {"startMemoId": a, "maxDepth": 11})
    assert response.status_code == 400

    response = invoke("memory.relation.save", {"sourceMemoId": a, "targetMemoId": b, "tag": "x", "weight": 1.5})
    assert response.status_code == 400
    assert response.body["field"] == "weight"

    response = invoke("memory.relation.save", {"sourceMemoId": a, "targetMemoId": b, "tag": "t" * 65, "weight": 1})
    assert response.body["field"] == "tag"

    response = invoke("memory.relation.delete", {"sourceMemoId": a, "targetMemoId": b, "tag": "next"})
    assert response.status_code == 200
    response = invoke("memory.relation.delete", {"sourceMemoId": a, "targetMemoId": b, "tag": "next"})
    assert response.status_code == 404
    assert response.body["error"] == "relation_not_found"


def test_namespace_rename(invoke):
    a = _save(invoke, "a", namespace="old")["memoId"]
    b = _save(invoke, "b", namespace="old")["memoId"]
    invoke("memory.relation.save", {"namespace": "old", "sourceMemoId": a, "targetMemoId": b, "tag": "t", "weight": 1})

    response = invoke("memory.namespace.rename", {"fromNamespace": "old", "toNamespace": "new"})
    assert response.status_code == 200
    body = response.body
    assert body["previousNamespace"] == "legacy/DEF/old"
    assert body["newNamespace"] == "legacy/DEF/new"
    assert body["updatedCount"] == 2
    assert body["relationCount"] == 1

    response = invoke("memory.namespace.rename", {
        "fromNamespace": "new",
        "toNamespace": "/moved",
        "memoId": a,
    })
    assert response.body["newNamespace"] == "legacy/moved"
    assert response.body["memoIds"] == [a]

    response = invoke("memory.namespace.rename", {
        "fromNamespace": "new",
        "toNamespace": "other",
        "memoId": str(uuid.uuid4()),
    })
    assert response.status_code == 404


def test_rename_conflict_is_409(invoke):
    memo = _save(invoke, "a", namespace="one")
    _save(invoke, "b", namespace="two", memoId=memo["memoId"])
    response = invoke("memory.namespace.rename", {"fromNamespace": "one", "toNamespace": "two"})
    assert response.status_code == 409
    assert response.body["error"] == "namespace_rename_conflict"


def test_unknown_tool_and_bad_params(invoke):
    response = invoke("memory.teleport", {})
    assert response.status_code == 400
    assert response.body["error"] == "unknown_tool"

    response = invoke("memory.list", ["not", "a", "dict"])
    assert response.status_code == 400
    assert response.body["field"] == "params"


def test_missing_database(context, monkeypatch):
    monkeypatch.setattr(DB, "SessionLocal", None)
    response = handle_invocation("memory.list", {}, context)
    assert response.status_code == 500
    assert response.body["error"] == "internal_error"


def test_cursor_round_trip_and_rejection():
    assert decode_cursor(encode_cursor(40)) == 40
    assert decode_cursor(None) == 0
    with pytest.raises(ValidationIssue):
        decode_cursor(encode_cursor(-1))


def test_blank_search_query_is_invalid_input(invoke):
    _save(invoke, "something recent")
    response = invoke("memory.search", {"namespace": "notes", "query": "   "})
    assert response.status_code == 400
    assert response.body["error"] == "invalid_input"
    assert response.body["field"] == "query"
