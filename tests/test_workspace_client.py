import json
from pathlib import Path

import httpx
import pytest

from genbank_batch.workspace.client import (
    StatResult,
    WorkspaceClient,
    WorkspaceError,
    WorkspaceSettings,
    expand_workspace_path,
)

URL = "https://workspace.test/services/Workspace"
TOKEN = "un=user@patricbrc.org|tokenid=abc|expiry=1"
NODE = "https://shock.test/node/1234"


def _meta(name: str, obj_type: str, size: int, node_url: str = "") -> list:
    return [name, obj_type, "/user@patricbrc.org/home/batch/", "2024-01-01", "id", "user", size, {}, {}, "o", "o", node_url]


class RpcRecorder:
    def __init__(self, responder) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def rpc_bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests if str(request.url) == URL]


def _client(responder, **settings) -> tuple[WorkspaceClient, RpcRecorder]:
    recorder = RpcRecorder(responder)
    options = {"url": URL, "token": TOKEN, "backoff_s": 0.0}
    options.update(settings)
    http = httpx.Client(transport=httpx.MockTransport(recorder))
    return WorkspaceClient(WorkspaceSettings(**options), http_client=http), recorder


def _result(result) -> httpx.Response:
    return httpx.Response(200, json={"version": "1.1", "result": result})


def test_stat_reports_folder() -> None:
    client, recorder = _client(lambda request: _result([[[_meta("batch", "folder", 0), ""]]]))

    stat = client.stat("/user@patricbrc.org/home/batch")

    assert stat == StatResult.of(0, is_dir=True)
    body = recorder.rpc_bodies()[0]
    assert body["method"] == "Workspace.get"
    assert body["params"] == [{"objects": ["/user@patricbrc.org/home/batch"], "metadata_only": 1}]
    assert recorder.requests[0].headers["Authorization"] == TOKEN


def test_stat_reports_file_size() -> None:
    client, _ = _client(lambda request: _result([[[_meta("a.genome", "genome", 4096), ""]]]))

    stat = client.stat("/user@patricbrc.org/home/batch/.a/a.genome")

    assert stat.found
    assert stat.size == 4096
    assert not stat.is_dir


def test_stat_maps_not_found_error_to_missing() -> None:
    def responder(request):
        return httpx.Response(500, json={"error": {"message": "Object /x/home/nope not found"}})

    client, _ = _client(responder)

    assert client.stat("/x/home/nope").not_found


def test_stat_empty_result_is_missing() -> None:
    client, _ = _client(lambda request: _result([[]]))
    assert client.stat("/x/home/nope").not_found


def test_stat_other_errors_are_failures() -> None:
    def responder(request):
        return httpx.Response(500, json={"error": {"message": "permission denied"}})

    client, _ = _client(responder)
    stat = client.stat("/other@patricbrc.org/home/private")

    assert stat.failed
    assert "permission denied" in (stat.error or "")


def test_call_retries_server_errors_without_body() -> None:
    responses = iter([httpx.Response(502, text="bad gateway"), _result([[[_meta("batch", "folder", 0), ""]]])])
    client, recorder = _client(lambda request: next(responses), attempts=2)

    assert client.stat("/user@patricbrc.org/home/batch").is_dir
    assert len(recorder.requests) == 2


def test_call_gives_up_after_attempts() -> None:
    client, recorder = _client(lambda request: httpx.Response(503, text="unavailable"), attempts=3)

    stat = client.stat("/user@patricbrc.org/home/batch")

    assert stat.failed
    assert len(recorder.requests) == 3


def test_transport_errors_are_retried() -> None:
    calls = {"count": 0}

    def responder(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return _result([[[_meta("batch", "folder", 0), ""]]])

    client, _ = _client(responder, attempts=2)

    assert client.stat("/user@patricbrc.org/home/batch").found
    assert calls["count"] == 2


def test_save_file_creates_upload_node_then_puts_content(tmp_path: Path) -> None:
    local = tmp_path / "ecoli.gbk"
    local.write_text("LOCUS ecoli\n//\n", encoding="utf-8")

    def responder(request):
        if str(request.url) == URL:
            return _result([[_meta("ecoli.gbk", "contigs", 0, NODE)]])
        return httpx.Response(200, json={"status": 200})

    client, recorder = _client(responder)

    client.save_file(local, {"genbank_batch": 1}, "/user@patricbrc.org/home/batch/ecoli.gbk", "contigs", overwrite=True)

    create = recorder.rpc_bodies()[0]
    assert create["method"] == "Workspace.create"
    assert create["params"][0]["createUploadNodes"] == 1
    assert create["params"][0]["overwrite"] == 1
    assert create["params"][0]["objects"] == [
        ["/user@patricbrc.org/home/batch/ecoli.gbk", "contigs", {"genbank_batch": 1}, ""]
    ]
    put = recorder.requests[1]
    assert put.method == "PUT"
    assert str(put.url) == NODE
    assert put.headers["Authorization"] == f"OAuth {TOKEN}"
    assert b"LOCUS ecoli" in put.content


def test_save_file_inline_sends_content(tmp_path: Path) -> None:
    local = tmp_path / "small.gbk"
    local.write_text("LOCUS small\n", encoding="utf-8")
    client, recorder = _client(lambda request: _result([[_meta("small.gbk", "contigs", 12)]]))

    client.save_file(local, {}, "/u/home/small.gbk", "contigs", overwrite=False, use_upload_node=False)

    params = recorder.rpc_bodies()[0]["params"][0]
    assert params["objects"][0][3] == "LOCUS small\n"
    assert params["overwrite"] == 0
    assert "createUploadNodes" not in params
    assert len(recorder.requests) == 1


def test_save_file_without_node_url_raises(tmp_path: Path) -> None:
    local = tmp_path / "a.gbk"
    local.write_text("x", encoding="utf-8")
    client, _ = _client(lambda request: _result([[_meta("a.gbk", "contigs", 0)]]))

    with pytest.raises(WorkspaceError, match="upload node"):
        client.save_file(local, {}, "/u/home/a.gbk", "contigs", overwrite=False)


def test_save_file_node_failure_raises(tmp_path: Path) -> None:
    local = tmp_path / "a.gbk"
    local.write_text("x", encoding="utf-8")

    def responder(request):
        if str(request.url) == URL:
            return _result([[_meta("a.gbk", "contigs", 0, NODE)]])
        return httpx.Response(500, text="node error")

    client, _ = _client(responder)

    with pytest.raises(WorkspaceError, match="Failed to upload"):
        client.save_file(local, {}, "/u/home/a.gbk", "contigs", overwrite=False)


def test_rpc_error_is_raised() -> None:
    client, _ = _client(lambda request: httpx.Response(500, json={"error": {"message": "quota exceeded"}}))

    with pytest.raises(WorkspaceError, match="quota exceeded"):
        client.download_to_string("/u/home/wf.json")


def test_download_inline_document() -> None:
    client, _ = _client(lambda request: _result([[[_meta("wf.json", "json", 14), '{"stages": []}']]]))
    assert client.download_to_string("/u/home/wf.json") == '{"stages": []}'


def test_download_from_node() -> None:
    def responder(request):
        if str(request.url) == URL:
            return _result([[[_meta("wf.json", "json", 14, NODE), ""]]])
        assert request.url.query == b"download"
        return httpx.Response(200, text='{"stages": [{"name": "x"}]}')

    client, _ = _client(responder)

    assert client.download_to_string("/u/home/wf.json") == '{"stages": [{"name": "x"}]}'


def test_settings_from_env_and_user() -> None:
    settings = WorkspaceSettings.from_env({"KB_AUTH_TOKEN": TOKEN, "P3_WORKSPACE_URL": URL})

    assert settings.url == URL
    assert settings.token == TOKEN
    assert settings.user == "user@patricbrc.org"


def test_settings_without_token_have_no_user() -> None:
    assert WorkspaceSettings(token=None).user is None
    assert WorkspaceSettings(token="tokenid=abc").user is None


def test_expand_workspace_path() -> None:
    assert expand_workspace_path("/abs/home/x", None) == "/abs/home/x"
    assert expand_workspace_path("wf/x.json", "me@patricbrc.org") == "/me@patricbrc.org/home/wf/x.json"
    with pytest.raises(WorkspaceError):
        expand_workspace_path("wf/x.json", None)


def test_client_closes_http_on_exit() -> None:
    client, _ = _client(lambda request: _result([]))
    with client:
        pass
    assert client._http.is_closed


def test_stat_truncated_metadata_is_a_failure() -> None:
    client, _ = _client(lambda request: _result([[[["ecoli.genome", "genome"], ""]]]))

    stat = client.stat("/user@patricbrc.org/home/batch/.ecoli/ecoli.genome")

    assert stat.failed
    assert "Malformed metadata" in (stat.error or "")


def test_stat_non_numeric_size_is_a_failure() -> None:
    client, _ = _client(lambda request: _result([[[_meta("a.genome", "genome", "big"), ""]]]))
    assert client.stat("/u/home/.a/a.genome").failed


def test_http_errors_outside_transport_become_workspace_errors() -> None:
    def responder(request):
        raise httpx.DecodingError("bad gzip", request=request)

    client, recorder = _client(responder, attempts=3)

    assert client.stat("/u/home/batch").failed
    with pytest.raises(WorkspaceError, match="bad gzip"):
        client.download_to_string("/u/home/wf.json")
    assert len(recorder.requests) == 2
