"""
HTTP Surface Tests

The app is exercised without its startup hook: components are injected into
the module globals, backed by in-process stores and a scripted agent.
"""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from planner.models import CandidatePlan, ExtractorResult, TaskDraft


def _ready_plan():
    return ExtractorResult(
        message="Here's your plan!",
        ready_to_generate=True,
        plan=CandidatePlan(title="Dinner", tasks=[TaskDraft(title="Book table"), TaskDraft(title="Buy wine")]),
    )


class TestPlannerAPI:
    def setup_method(self):
        from planner import main
        from planner.lifecycle import SessionLifecycleManager
        from planner.materializer import PlanMaterializer
        from planner.memory_store import MemoryActivityStore, MemorySessionStore
        from planner.state_machine import ConversationStateMachine

        self.main = main
        self.sessions = MemorySessionStore()
        self.extractor = MagicMock()
        self.extractor.process = AsyncMock()
        main.session_store = self.sessions
        main.activity_store = MemoryActivityStore()
        main.engine = ConversationStateMachine(
            lifecycle=SessionLifecycleManager(self.sessions, idle_timeout_seconds=0),
            session_store=self.sessions,
            extractor=self.extractor,
            materializer=PlanMaterializer(main.activity_store),
        )
        self.client = TestClient(main.app)

    def teardown_method(self):
        self.main.engine = None
        self.main.session_store = None
        self.main.activity_store = None

    def _post(self, body, headers=None):
        if headers is None:
            headers = {"X-User-Id": "u1"}
        return self.client.post("/plan/conversation", json=body, headers=headers)

    def test_root(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Planner"

    def test_health(self):
        body = self.client.get("/health").json()
        assert body["components"]["engine"]["ready"] is True
        assert body["components"]["sessions"]["backend"] == "memory"

    def test_missing_message_is_400(self):
        assert self._post({"conversationHistory": []}).status_code == 400

    def test_engine_not_ready_is_503(self):
        self.main.engine = None
        assert self._post({"message": "hi", "conversationHistory": []}).status_code == 503

    def test_continuation_without_session_is_410(self):
        response = self._post({
            "message": "yes",
            "conversationHistory": [{"role": "user", "content": "plan dinner"}],
        })
        assert response.status_code == 410
        body = response.json()
        assert body["error"] == "session_expired"
        assert body["sessionCompleted"] is True
        assert body["requiresReset"] is True

    def test_full_conversation(self):
        self.extractor.process.side_effect = [
            ExtractorResult(message="When is dinner?"),
            _ready_plan(),
        ]
        history = []
        first = self._post({"message": "plan a dinner date", "conversationHistory": history, "mode": "quick"})
        assert first.status_code == 200
        session_id = first.json()["sessionId"]

        history += [{"role": "user", "content": "plan a dinner date"},
                    {"role": "assistant", "content": first.json()["message"]}]
        second = self._post({"message": "friday at 7pm", "conversationHistory": history})
        assert second.json()["awaitingConfirmation"] is True

        history += [{"role": "user", "content": "friday at 7pm"},
                    {"role": "assistant", "content": second.json()["message"]}]
        third = self._post({"message": "yes", "conversationHistory": history})
        body = third.json()
        assert third.status_code == 200
        assert body["activityCreated"] is True
        assert len(body["createdTasks"]) == 2
        assert body["sessionId"] == session_id

        stored = self.client.get(f"/session/{session_id}", headers={"X-User-Id": "u1"})
        assert stored.json()["is_complete"] is True
        assert self.client.get(f"/session/{session_id}", headers={"X-User-Id": "u2"}).status_code == 404

    def test_materialization_failure_is_500_generic(self):
        self.extractor.process.side_effect = [ExtractorResult(message="When?"), _ready_plan()]
        history = [{"role": "user", "content": "x"}]
        self._post({"message": "plan a dinner", "conversationHistory": []})
        self._post({"message": "friday", "conversationHistory": history})
        self.main.engine._materializer._store.create_activity = AsyncMock(side_effect=RuntimeError("pg down"))

        response = self._post({"message": "yes", "conversationHistory": history})

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to update your plan. Your changes were rolled back."
        assert "pg down" not in response.text

    def test_guest_receives_id_header(self):
        self.extractor.process.side_effect = [ExtractorResult(message="What are we planning?")]
        response = self._post({"message": "hello", "conversationHistory": []}, headers={})
        guest_id = response.headers["X-Guest-Id"]
        assert guest_id

        self.extractor.process.side_effect = [ExtractorResult(message="Great")]
        followup = self._post(
            {"message": "a picnic", "conversationHistory": [{"role": "user", "content": "hello"}]},
            headers={"X-Guest-Id": guest_id},
        )
        assert followup.status_code == 200
        assert followup.json()["sessionId"] == response.json()["sessionId"]
        session_id = response.json()["sessionId"]
        assert self.client.get(f"/session/{session_id}", headers={"X-Guest-Id": guest_id}).status_code == 200
        assert self.client.get(f"/session/{session_id}", headers={"X-Guest-Id": "someone-else"}).status_code == 404
        assert self.client.get(f"/session/{session_id}", headers={"X-User-Id": guest_id}).status_code == 404
