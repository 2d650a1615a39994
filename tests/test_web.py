"""Tests for the REST and WebSocket API."""

import time
from pathlib import Path

import pytest

from agent_kanban.state import AppState

from .helpers import FakeAgent, Round, commit_file, git, init_git_repo, make_config, question_line, result_line

try:
	from starlette.testclient import TestClient

	from agent_kanban.web.app import build_app

	HAS_WEB = True
except ImportError:
	HAS_WEB = False

pytestmark = pytest.mark.skipif(not HAS_WEB, reason="web extras not installed")


def _adds_feature(working_dir: Path) -> None:
	commit_file(working_dir, "feature.py", "print('feature')\n", message="add feature")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
	path = tmp_path / "repo"
	init_git_repo(path)
	return path


@pytest.fixture
def agent() -> FakeAgent:
	return FakeAgent(Round(stdout=["working"], on_run=_adds_feature))


@pytest.fixture
def client(tmp_path: Path, repo: Path, agent: FakeAgent):
	"""Test client whose app runs the full lifespan against a temp project."""
	state = AppState(make_config(tmp_path, repo), executor_factory=agent)
	with TestClient(build_app(state=state)) as c:
		yield c


def _poll(client: "TestClient", path: str, key: str, expected: str, timeout: float = 10.0) -> dict:
	deadline = time.monotonic() + timeout
	while True:
		data = client.get(path).json()
		if data.get(key) == expected or time.monotonic() > deadline:
			return data
		time.sleep(0.05)


def _create(client: "TestClient", title: str = "Add feature") -> str:
	resp = client.post("/api/tasks", json={"title": title})
	assert resp.status_code == 201
	return resp.json()["id"]


class TestServer:
	def test_health(self, client: "TestClient"):
		assert client.get("/api/health").json() == {"status": "ok"}

	def test_server_info(self, client: "TestClient", repo: Path):
		data = client.get("/api/server/info").json()
		assert data["project_path"] == str(repo.resolve())
		assert data["is_git_repo"] is True
		assert data["main_branch"] == "main"
		assert data["preview_enabled"] is False


class TestTaskRoutes:
	def test_crud(self, client: "TestClient"):
		task_id = _create(client, "Add login")

		assert client.get(f"/api/tasks/{task_id}").json()["title"] == "Add login"
		assert len(client.get("/api/tasks").json()) == 1
		assert client.get("/api/tasks", params={"status": "done"}).json() == []

		resp = client.patch(f"/api/tasks/{task_id}", json={"description": "With OAuth"})
		assert resp.json()["description"] == "With OAuth"

		assert client.delete(f"/api/tasks/{task_id}").status_code == 204
		assert client.get(f"/api/tasks/{task_id}").status_code == 404

	def test_blank_title_is_bad_request(self, client: "TestClient"):
		assert client.post("/api/tasks", json={"title": "  "}).status_code == 400
		assert client.post("/api/tasks", json={}).status_code == 400

	def test_start_runs_to_review(self, client: "TestClient", agent: FakeAgent):
		task_id = _create(client)

		resp = client.post(f"/api/tasks/{task_id}/start")
		assert resp.status_code == 200
		assert resp.json()["status"] == "in_progress"

		task = _poll(client, f"/api/tasks/{task_id}", "status", "review")
		assert task["status"] == "review"
		assert task["branch_name"].startswith("task/add-feature-")
		assert agent.calls[0].prompt == "Add feature"

		again = client.post(f"/api/tasks/{task_id}/start")
		assert again.status_code == 409
		assert again.json()["status"] == "review"

	def test_cancel_not_running_conflicts(self, client: "TestClient"):
		task_id = _create(client)
		assert client.post(f"/api/tasks/{task_id}/cancel").status_code == 409

	def test_diff_without_workspace(self, client: "TestClient"):
		task_id = _create(client)
		assert client.get(f"/api/tasks/{task_id}/diff").status_code == 400

	def test_merge_flow(self, client: "TestClient", repo: Path):
		task_id = _create(client)
		client.post(f"/api/tasks/{task_id}/start")
		_poll(client, f"/api/tasks/{task_id}", "status", "review")

		diff = client.get(f"/api/tasks/{task_id}/diff").json()
		assert [f["path"] for f in diff["files"]] == ["feature.py"]

		resp = client.post(f"/api/tasks/{task_id}/merge")
		assert resp.status_code == 200
		assert resp.json()["status"] == "done"
		assert (repo / "feature.py").exists()
		assert "add feature" in git(repo, "log", "--oneline", "main")

	def test_merge_requires_review(self, client: "TestClient"):
		task_id = _create(client)
		resp = client.post(f"/api/tasks/{task_id}/merge")
		assert resp.status_code == 409
		assert resp.json()["status"] == "todo"

	def test_preview_routes(self, client: "TestClient"):
		task_id = _create(client)
		assert client.post(f"/api/tasks/{task_id}/preview").status_code == 400
		assert client.get(f"/api/tasks/{task_id}/preview").status_code == 404
		assert client.delete(f"/api/tasks/{task_id}/preview").status_code == 404


class TestPlanRoutes:
	@pytest.fixture
	def agent(self) -> FakeAgent:
		return FakeAgent(
			Round(stdout=[question_line({"question": "Which provider?", "header": "Provider"})]),
			Round(stdout=[result_line("Use GitHub OAuth.")]),
		)

	def test_plan_flow(self, client: "TestClient"):
		resp = client.post("/api/plan/start", json={"title": "OAuth", "prompt": "Add OAuth login"})
		assert resp.status_code == 201
		session_id = resp.json()["id"]

		waiting = _poll(client, f"/api/plan/{session_id}", "status", "waiting_for_answer")
		assert waiting["pending_questions"][0]["question"] == "Which provider?"
		assert [s["id"] for s in client.get("/api/plan/sessions").json()] == [session_id]

		resp = client.post(
			f"/api/plan/{session_id}/answer",
			json={"answers": [{"question_index": 0, "answers": ["GitHub"]}]},
		)
		assert resp.status_code == 200
		_poll(client, f"/api/plan/{session_id}", "status", "summary")

		resp = client.post(f"/api/plan/{session_id}/execute", json={})
		assert resp.status_code == 201
		assert resp.json()["title"] == "OAuth"
		assert resp.json()["status"] == "todo"
		assert client.get(f"/api/plan/{session_id}").status_code == 404

	def test_unknown_session(self, client: "TestClient"):
		assert client.get("/api/plan/missing").status_code == 404
		assert client.delete("/api/plan/missing").status_code == 404

	def test_prompt_required(self, client: "TestClient"):
		assert client.post("/api/plan/start", json={"title": "x"}).status_code == 400


class TestChatRoutes:
	@pytest.fixture
	def agent(self) -> FakeAgent:
		return FakeAgent(Round(stdout=["main.py prints hello"]))

	def test_send_and_history(self, client: "TestClient"):
		resp = client.post("/api/chat/message", json={"content": "What does main.py do?"})
		assert resp.status_code == 202
		assert resp.json()["user_message"]["role"] == "user"

		deadline = time.monotonic() + 10
		messages = []
		while len(messages) < 2 and time.monotonic() < deadline:
			messages = client.get("/api/chat/history").json()["messages"]
			time.sleep(0.05)
		assert [m["role"] for m in messages] == ["user", "assistant"]
		assert messages[1]["content"] == "main.py prints hello"

		assert client.delete("/api/chat/history").json() == {"deleted_count": 2}
		assert client.get("/api/chat/history").json()["messages"] == []


class TestWebSocket:
	def test_ping_and_events(self, client: "TestClient"):
		with client.websocket_connect("/api/ws") as ws:
			ws.send_json({"type": "ping"})
			assert ws.receive_json() == {"type": "pong"}

			task_id = _create(client, "Watched")
			event = ws.receive_json()
			assert event["type"] == "task_updated"
			assert event["task"]["id"] == task_id
