"""
Timed exam-taking session.

Drives one student's attempt: a cooperative countdown, free navigation,
fire-and-forget answer saves and a single completion call, whether the
student submits or the clock runs out.
"""
import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from examhub.client.api import ExamApiClient
from examhub.core.errors import ExamHubError, InvalidState

logger = logging.getLogger(__name__)

SaveFn = Callable[[int, str], Awaitable[Any]]
ErrorFn = Callable[[int, Exception], None]


class SessionState(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class AnswerBuffer:
    """Per-question save queue.

    At most one save per question is in flight; values written meanwhile
    collapse to the latest one, which is sent when the current save returns.
    """

    def __init__(self, save: SaveFn, on_error: ErrorFn):
        self._save = save
        self._on_error = on_error
        self._pending: Dict[int, str] = {}
        self._workers: Dict[int, asyncio.Task] = {}

    def put(self, question_id: int, text: str) -> None:
        self._pending[question_id] = text
        if question_id not in self._workers:
            self._workers[question_id] = asyncio.create_task(self._drain(question_id))

    @property
    def busy(self) -> bool:
        return bool(self._workers)

    async def _drain(self, question_id: int) -> None:
        try:
            while question_id in self._pending:
                text = self._pending.pop(question_id)
                try:
                    await self._save(question_id, text)
                except (ExamHubError, httpx.HTTPError) as e:
                    self._on_error(question_id, e)
        finally:
            self._workers.pop(question_id, None)

    async def flush(self) -> None:
        """Wait until every queued and in-flight save has finished."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()))


class ExamTakingSession:
    def __init__(self, api: ExamApiClient, exam_id: int, tick_interval: float = 1.0, auto_tick: bool = True,
                 on_notify: Optional[Callable[[str], None]] = None):
        self.api = api
        self.exam_id = exam_id
        self.tick_interval = tick_interval
        self.auto_tick = auto_tick
        self.on_notify = on_notify

        self.state = SessionState.NOT_STARTED
        self.exam: Optional[dict] = None
        self.questions: List[dict] = []
        self.attempt: Optional[dict] = None
        self.result: Optional[dict] = None
        self.remaining = 0
        self.index = 0
        self.answers: Dict[int, str] = {}
        self.notifications: List[str] = []
        self.forced = False

        self._buffer = AnswerBuffer(self._save_answer, self._save_failed)
        self._complete_lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self.state != SessionState.NOT_STARTED:
            raise InvalidState("Session already started")
        self.exam = await self.api.get_exam(self.exam_id)
        self.questions = await self.api.list_questions(self.exam_id)
        self.attempt = await self.api.start_attempt(self.exam_id)
        self.remaining = int(self.exam["duration"]) * 60
        self.index = 0
        self.state = SessionState.IN_PROGRESS
        logger.info(f"Exam {self.exam_id}: attempt {self.attempt['id']} running, {self.remaining}s on the clock")
        if self.auto_tick:
            self._timer = asyncio.create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while self.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING):
            await asyncio.sleep(self.tick_interval)
            await self.tick()

    async def tick(self) -> None:
        """Advance the clock one second; at zero the attempt is completed."""
        if self.state != SessionState.IN_PROGRESS:
            return
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            await self._complete(forced=True)

    async def submit(self, confirm: bool = False) -> bool:
        """Manual submission; without confirmation nothing happens."""
        if not confirm:
            return False
        return await self._complete(forced=False)

    async def close(self) -> None:
        self._stop_timer()
        await self._buffer.flush()

    # ---------- navigation ----------

    @property
    def current_question(self) -> Optional[dict]:
        return self.questions[self.index] if self.questions else None

    def jump(self, index: int) -> int:
        if self.questions:
            self.index = min(max(index, 0), len(self.questions) - 1)
        return self.index

    def next(self) -> int:
        return self.jump(self.index + 1)

    def previous(self) -> int:
        return self.jump(self.index - 1)

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.questions if self.answers.get(q["id"]))

    # ---------- answers ----------

    def answer(self, question_id: int, text: str) -> None:
        if self.state != SessionState.IN_PROGRESS:
            raise InvalidState("Answers can only change while the exam is in progress")
        self.answers[question_id] = text
        self._buffer.put(question_id, text)

    async def _save_answer(self, question_id: int, text: str) -> Any:
        return await self.api.submit_answer(self.attempt["id"], question_id, text)

    def _save_failed(self, question_id: int, exc: Exception) -> None:
        logger.warning(f"Saving answer for question {question_id} failed: {exc}")
        self.notify(f"Could not save your answer to question {question_id}: {exc}")

    def notify(self, message: str) -> None:
        self.notifications.append(message)
        if self.on_notify is not None:
            self.on_notify(message)

    # ---------- completion ----------

    async def _complete(self, forced: bool) -> bool:
        async with self._complete_lock:
            if self.state != SessionState.IN_PROGRESS:
                return self.state == SessionState.COMPLETED
            self.state = SessionState.SUBMITTING
            self.forced = forced
            completed = False
            try:
                await self._buffer.flush()
                try:
                    self.result = await self.api.complete_attempt(self.attempt["id"])
                except InvalidState:
                    logger.info(f"Attempt {self.attempt['id']} was already completed on the server")
                    self.result = await self._server_result()
                completed = True
            except (ExamHubError, httpx.HTTPError) as e:
                logger.warning(f"Completing attempt {self.attempt['id']} failed: {e}")
                self.notify(f"Could not submit the exam: {e}")
                return False
            finally:
                if not completed:
                    self.state = SessionState.IN_PROGRESS
            self.state = SessionState.COMPLETED
            self._stop_timer()
            logger.info(f"Attempt {self.attempt['id']} completed ({'time up' if forced else 'submitted'})")
            return True

    async def _server_result(self) -> dict:
        try:
            return await self.api.get_attempt(self.attempt["id"])
        except (ExamHubError, httpx.HTTPError) as e:
            logger.warning(f"Could not fetch completed attempt {self.attempt['id']}: {e}")
            return dict(self.attempt)

    def _stop_timer(self) -> None:
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
