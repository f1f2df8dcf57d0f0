"""RosterClient 테스트 (aiohttp 테스트 서버 사용)."""
import pytest
from aiohttp import web
from aiohttp import test_utils

from proctor.errors import RosterError
from proctor.roster.client import RosterClient


async def student_list(request):
    coordinator_id = request.match_info["coordinator_id"]
    if coordinator_id == "missing":
        return web.json_response({"error": "not found"}, status=404)
    if coordinator_id == "broken":
        return web.json_response({"students": []})
    return web.json_response({"studentList": ["UNI001", "UNI002", 2023]})


async def create_token(request):
    body = await request.json()
    request.app["token_requests"].append(body)
    if not body.get("studentList"):
        return web.json_response({})
    return web.json_response({"token": "session-token"})


@pytest.fixture
async def roster_api():
    app = web.Application()
    app["token_requests"] = []
    app.router.add_get("/teachers/getStudentList/{coordinator_id}", student_list)
    app.router.add_post("/createToken", create_token)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


async def test_fetch_roster(roster_api):
    async with RosterClient(str(roster_api.make_url("/"))) as client:
        roster = await client.fetch_roster("teacher-01")

    assert roster == ["UNI001", "UNI002", "2023"]


async def test_fetch_roster_http_error(roster_api):
    async with RosterClient(str(roster_api.make_url("/"))) as client:
        with pytest.raises(RosterError):
            await client.fetch_roster("missing")


async def test_fetch_roster_unexpected_body(roster_api):
    async with RosterClient(str(roster_api.make_url("/"))) as client:
        with pytest.raises(RosterError):
            await client.fetch_roster("broken")


async def test_issue_token(roster_api):
    async with RosterClient(str(roster_api.make_url("/"))) as client:
        token = await client.issue_token("teacher-01", ["UNI001"])

    assert token == "session-token"
    assert roster_api.app["token_requests"] == [{"ID": "teacher-01", "studentList": ["UNI001"]}]


async def test_issue_token_missing_token(roster_api):
    async with RosterClient(str(roster_api.make_url("/"))) as client:
        with pytest.raises(RosterError):
            await client.issue_token("teacher-01", [])


async def test_unreachable_backend():
    async with RosterClient("http://127.0.0.1:9", timeout=1.0) as client:
        with pytest.raises(RosterError):
            await client.fetch_roster("teacher-01")
