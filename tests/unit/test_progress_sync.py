"""Tests for ProgressSyncClient."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from course_player.errors import ApiError, MalformedQuestionError
from course_player.models.progress import ProgressSnapshot, QuestionSession
from course_player.models.question import QuestionType
from course_player.models.video import VideoType
from course_player.sync.progress import ProgressSyncClient


def _snapshot(**overrides: object) -> ProgressSnapshot:
    data: dict[str, object] = {
        "position_ms": 3000,
        "duration_ms": 10_000,
        "completed": False,
        "video_type": VideoType.TRACKABLE,
    }
    data.update(overrides)
    return ProgressSnapshot.model_validate(data)


def _question_payload(qid: str, seconds: int) -> dict[str, object]:
    return {
        "_id": qid,
        "questionType": "text",
        "meta": {"timeToShowQuestion": seconds},
        "question": {"text": "Explain"},
    }


@pytest.fixture()
def api() -> AsyncMock:
    mock = AsyncMock()
    mock.get.return_value = {}
    mock.post.return_value = None
    mock.patch.return_value = None
    return mock


@pytest.fixture()
def client(api: AsyncMock) -> ProgressSyncClient:
    return ProgressSyncClient(api, course_id="c1", chapter_id="ch1")


class TestPush:
    async def test_first_push_posts_then_patches(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        """First push creates the record; later pushes update it."""
        first = await client.push("v1", _snapshot())
        second = await client.push("v1", _snapshot(position_ms=4000))

        assert (first.ok, first.method) == (True, "POST")
        assert (second.ok, second.method) == (True, "PATCH")
        assert api.post.await_args.args[0] == "/video/progress"
        assert api.patch.await_args.args[0] == "/video/progress/v1"
        body = api.patch.await_args.kwargs["json"]
        assert body["currentDurationMs"] == 4000
        assert body["totalDurationMs"] == 10_000
        assert body["courseId"] == "c1"

    async def test_failure_reported_not_raised(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        """API errors come back as a failed PushResult."""
        api.post.side_effect = ApiError("down", status_code=503, path="/x")
        result = await client.push("v1", _snapshot())
        assert result.ok is False
        assert result.error == "down"
        assert client.record_for("v1").already_submitted is False

        api.post.side_effect = None
        retry = await client.push("v1", _snapshot())
        assert retry.method == "POST"

    async def test_completion_is_sticky(self, client: ProgressSyncClient) -> None:
        await client.push("v1", _snapshot(completed=True))
        await client.push("v1", _snapshot(completed=False, position_ms=0))
        assert client.record_for("v1").is_completed is True

    async def test_checkpoint_forward_only(self, client: ProgressSyncClient) -> None:
        await client.push("v1", _snapshot(last_correct_checkpoint_ms=5000))
        await client.push("v1", _snapshot(last_correct_checkpoint_ms=2000))
        assert client.record_for("v1").last_correct_checkpoint_ms == 5000

    async def test_submissions_deduplicated(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        """Only the latest submission per question is sent."""
        def attempt(answer: str) -> QuestionSession:
            return QuestionSession(
                question_id="q1",
                question_type=QuestionType.FREE_TEXT,
                answer=answer,
                attempted_at=datetime(2026, 1, 1, tzinfo=UTC),
            )

        await client.push("v1", _snapshot(submission_log=[attempt("first")]))
        await client.push("v1", _snapshot(submission_log=[attempt("second")]))
        body = api.patch.await_args.kwargs["json"]
        submissions = body["meta"]["submission"]
        assert [s["answer"] for s in submissions] == ["second"]

    async def test_response_merged(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.post.return_value = {
            "videoId": "v1",
            "isCompleted": "true",
            "meta": {"correctlyAnsweredQuestionIds": ["q7"]},
        }
        await client.push("v1", _snapshot())
        record = client.record_for("v1")
        assert record.is_completed is True
        assert "q7" in record.answered_question_ids

    @pytest.mark.parametrize(
        "body",
        [
            {"currentDurationMs": "12.5"},
            {"meta": "oops"},
            {"meta": {"submission": [{"answer": "x"}]}},
            {"meta": {"submission": [{"questionId": "q1", "questionType": "?"}]}},
        ],
    )
    async def test_malformed_response_reported_not_raised(
        self, api: AsyncMock, client: ProgressSyncClient, body: dict[str, object]
    ) -> None:
        """A 2xx body of the wrong shape fails the push without raising."""
        api.post.return_value = body
        result = await client.push("v1", _snapshot())
        assert (result.ok, result.method) == (False, "POST")
        assert result.error
        assert client.record_for("v1").already_submitted is True

    async def test_same_snapshot_sends_same_body(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        """Pushing one snapshot twice differs only in submittedAt."""
        attempt = QuestionSession(
            question_id="q1",
            question_type=QuestionType.SINGLE_CHOICE,
            answer="A",
            is_correct=True,
            attempted_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        snapshot = _snapshot(
            answered_question_ids={"q1"},
            submission_log=[attempt],
            last_correct_checkpoint_ms=2000,
        )
        await client.push("v1", snapshot)
        await client.push("v1", snapshot)

        first = api.post.await_args.kwargs["json"]
        second = api.patch.await_args.kwargs["json"]
        first["meta"].pop("submittedAt")
        second["meta"].pop("submittedAt")
        assert first == second


class TestFetch:
    async def test_seeds_record(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.return_value = {"currentDurationMs": 4200, "totalDurationMs": 9000}
        record = await client.fetch("v1")
        assert record is not None
        assert record is client.record_for("v1")
        assert record.current_duration_ms == 4200
        assert record.already_submitted is True
        api.get.assert_awaited_once_with("/video/progress/v1")

    async def test_next_push_patches_after_fetch(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.return_value = {"currentDurationMs": 100}
        await client.fetch("v1")
        result = await client.push("v1", _snapshot())
        assert result.method == "PATCH"

    async def test_not_found(self, api: AsyncMock, client: ProgressSyncClient) -> None:
        """404 means the video has no progress yet."""
        api.get.side_effect = ApiError("missing", status_code=404, path="/p")
        assert await client.fetch("v1") is None
        assert client.record_for("v1").already_submitted is False

    async def test_server_error(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.side_effect = ApiError("boom", status_code=500, path="/p")
        assert await client.fetch("v1") is None

    async def test_empty_body(self, client: ProgressSyncClient) -> None:
        assert await client.fetch("v1") is None

    async def test_malformed_body(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.return_value = {"totalDurationMs": [1, 2]}
        assert await client.fetch("v1") is None
        assert client.record_for("v1").already_submitted is False


class TestFetchQuestions:
    async def test_list_body(self, api: AsyncMock, client: ProgressSyncClient) -> None:
        api.get.return_value = [_question_payload("b", 20), _question_payload("a", 5)]
        questions = await client.fetch_questions("v1")
        assert [q.id for q in questions] == ["a", "b"]
        api.get.assert_awaited_once_with("/questions", params={"videoId": "v1"})

    async def test_wrapped_body(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.return_value = {"questions": [_question_payload("a", 5)]}
        assert len(await client.fetch_questions("v1")) == 1

    async def test_none_body(self, api: AsyncMock, client: ProgressSyncClient) -> None:
        api.get.return_value = None
        assert await client.fetch_questions("v1") == []

    async def test_malformed_propagates(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.return_value = [{"_id": "x", "questionType": "essay"}]
        with pytest.raises(MalformedQuestionError):
            await client.fetch_questions("v1")

    async def test_api_error_propagates(
        self, api: AsyncMock, client: ProgressSyncClient
    ) -> None:
        api.get.side_effect = ApiError("down", status_code=503, path="/questions")
        with pytest.raises(ApiError):
            await client.fetch_questions("v1")
