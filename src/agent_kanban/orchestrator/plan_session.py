"""
Plan sessions - a multi-round interview layered over one-shot agent runs.

The agent keeps no memory between invocations, so every round is a fresh
process whose prompt replays the original request plus every question asked
and answered so far. Everything here is pure: no processes, no I/O.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PLAN_MODE_SUFFIX = (
	"\n\nInterview me in detail using the AskUserQuestionTool about literally anything: "
	"technical implementation, UI & UX, concerns, tradeoffs, etc. but make sure the "
	"questions are not obvious.\n"
	"Be very in-depth and continue interviewing me continually until it's complete. "
	"After gathering all information, provide a summary of the implementation plan."
)

HISTORY_HEADER = "\n\n## Previous conversation with the user\n\n"
CONTINUE_INSTRUCTION = (
	"## Continue from here\n\n"
	"Based on the user's answers above, continue the planning process. "
	"Ask more questions if needed or provide the final implementation plan."
)

QUESTION_TOOL = "AskUserQuestion"
WRITE_TOOL = "Write"
EXIT_PLAN_TOOL = "ExitPlanMode"


class PlanStatus(str, Enum):
	PROCESSING = "processing"
	WAITING_FOR_ANSWER = "waiting_for_answer"
	SUMMARY = "summary"
	COMPLETED = "completed"
	CANCELLED = "cancelled"
	ERROR = "error"


TERMINAL_STATUSES = frozenset({PlanStatus.COMPLETED, PlanStatus.CANCELLED, PlanStatus.ERROR})


class QuestionOption(BaseModel):
	label: str
	description: str = ""


class PlanQuestion(BaseModel):
	"""A question the agent asked, indexed across the whole session."""
	index: int = 0
	question: str
	header: str = ""
	options: list[QuestionOption] = Field(default_factory=list)
	multi_select: bool = False
	tool_use_id: str = ""


class PlanAnswer(BaseModel):
	question_index: int
	answers: list[str] = Field(default_factory=list)


class PlanSessionInfo(BaseModel):
	"""Serializable snapshot of a session."""
	id: str
	title: str
	prompt: str
	questions: list[PlanQuestion]
	pending_questions: list[PlanQuestion]
	answers: list[PlanAnswer]
	status: PlanStatus
	summary: Optional[str] = None
	plan_content: Optional[str] = None
	error: Optional[str] = None
	ask_questions: bool = True


@dataclass
class PlanSession:
	"""State of one planning conversation."""
	title: str
	prompt: str
	ask_questions: bool = True
	id: str = field(default_factory=lambda: str(uuid.uuid4()))
	questions: list[PlanQuestion] = field(default_factory=list)
	pending_questions: list[PlanQuestion] = field(default_factory=list)
	answers: list[PlanAnswer] = field(default_factory=list)
	status: PlanStatus = PlanStatus.PROCESSING
	summary: Optional[str] = None
	plan_content: Optional[str] = None
	error: Optional[str] = None
	accumulated_output: str = ""
	created_at: float = field(default_factory=time.monotonic)
	last_activity: float = field(default_factory=time.monotonic)

	def touch(self) -> None:
		self.last_activity = time.monotonic()

	@property
	def agent_prompt(self) -> str:
		"""The first-round prompt: the request, plus the interview instruction if enabled."""
		if self.ask_questions:
			return self.prompt + PLAN_MODE_SUFFIX
		return self.prompt

	def record_questions(self, questions: list[PlanQuestion]) -> list[PlanQuestion]:
		"""Append questions to the log (re-indexed), make them pending, and wait for answers."""
		start = len(self.questions)
		indexed = [q.model_copy(update={"index": start + i}) for i, q in enumerate(questions)]
		self.questions.extend(indexed)
		self.pending_questions = indexed
		self.status = PlanStatus.WAITING_FOR_ANSWER
		self.touch()
		return indexed

	def record_answers(self, answers: list[PlanAnswer]) -> None:
		self.answers.extend(answers)
		self.pending_questions = []
		self.status = PlanStatus.PROCESSING
		self.touch()

	def append_output(self, line: str) -> None:
		self.accumulated_output += line
		self.accumulated_output += "\n"
		self.touch()

	def record_summary(self, summary: str, plan_content: Optional[str] = None) -> None:
		self.summary = summary
		if plan_content is not None:
			self.plan_content = plan_content
		self.status = PlanStatus.SUMMARY
		self.touch()

	def record_error(self, message: str) -> None:
		self.error = message
		self.status = PlanStatus.ERROR
		self.touch()

	def mark(self, status: PlanStatus) -> None:
		self.status = status
		self.touch()

	def is_expired(self, timeout: float, now: Optional[float] = None) -> bool:
		now = time.monotonic() if now is None else now
		return now - self.last_activity > timeout

	def build_continuation_prompt(self) -> str:
		return build_continuation_prompt(self.agent_prompt, self.questions, self.answers)

	def next_prompt(self) -> str:
		"""Prompt for the next round: plain on the first, with history afterwards."""
		if not self.answers:
			return self.agent_prompt
		return self.build_continuation_prompt()

	def to_info(self) -> PlanSessionInfo:
		return PlanSessionInfo(
			id=self.id,
			title=self.title,
			prompt=self.prompt,
			questions=list(self.questions),
			pending_questions=list(self.pending_questions),
			answers=list(self.answers),
			status=self.status,
			summary=self.summary,
			plan_content=self.plan_content,
			error=self.error,
			ask_questions=self.ask_questions,
		)


def build_continuation_prompt(
	prompt: str,
	questions: list[PlanQuestion],
	answers: list[PlanAnswer],
) -> str:
	"""
	Rebuild the conversation so far into a single prompt.

	Each answer is paired with the question it refers to, in the order the
	answers were given.
	"""
	by_index = {q.index: q for q in questions}
	parts = [prompt, HISTORY_HEADER]
	for answer in answers:
		question = by_index.get(answer.question_index)
		if question is None:
			continue
		header = question.header or f"Q{question.index + 1}"
		parts.append(
			f"**Question ({header})**: {question.question}\n"
			f"**User's answer**: {', '.join(answer.answers)}\n\n"
		)
	parts.append(CONTINUE_INSTRUCTION)
	return "".join(parts)


# =============================================================================
# stream-json parsing
# =============================================================================


@dataclass
class RoundResult:
	"""What one agent round produced."""
	questions: list[PlanQuestion] = field(default_factory=list)
	plan_content: Optional[str] = None
	summary: Optional[str] = None
	is_error: bool = False


def _looks_like_plan_file(path: str) -> bool:
	lowered = path.replace("\\", "/").lower()
	return lowered.endswith(".md") and ("plan" in lowered.rsplit("/", 1)[-1] or "/plans/" in lowered)


def _parse_questions(tool_use: dict[str, Any]) -> list[PlanQuestion]:
	tool_input = tool_use.get("input") or {}
	questions = []
	for raw in tool_input.get("questions") or []:
		if not isinstance(raw, dict) or not raw.get("question"):
			continue
		options = [
			QuestionOption(label=str(o.get("label", "")), description=str(o.get("description", "")))
			for o in raw.get("options") or []
			if isinstance(o, dict)
		]
		questions.append(PlanQuestion(
			question=str(raw["question"]),
			header=str(raw.get("header", "")),
			options=options,
			multi_select=bool(raw.get("multiSelect", raw.get("multi_select", False))),
			tool_use_id=str(tool_use.get("id", "")),
		))
	return questions


def parse_stream_line(line: str, result: RoundResult) -> None:
	"""Fold one stream-json line into the round result. Non-JSON lines are ignored."""
	line = line.strip()
	if not line:
		return
	try:
		record = json.loads(line)
	except json.JSONDecodeError:
		logger.debug(f"Ignoring non-JSON agent output: {line[:200]}")
		return
	if not isinstance(record, dict):
		return

	kind = record.get("type")
	if kind == "assistant":
		content = (record.get("message") or {}).get("content") or []
		for block in content:
			if not isinstance(block, dict) or block.get("type") != "tool_use":
				continue
			name = block.get("name")
			tool_input = block.get("input") or {}
			if name == QUESTION_TOOL:
				result.questions.extend(_parse_questions(block))
			elif name == WRITE_TOOL and _looks_like_plan_file(str(tool_input.get("file_path", ""))):
				result.plan_content = tool_input.get("content")
			elif name == EXIT_PLAN_TOOL and tool_input.get("plan"):
				result.plan_content = tool_input["plan"]
	elif kind == "result":
		result.is_error = bool(record.get("is_error"))
		text = record.get("result")
		if isinstance(text, str) and text.strip():
			result.summary = text.strip()


def parse_stream_output(output: str) -> RoundResult:
	"""Parse a whole round of stream-json output."""
	result = RoundResult()
	for line in output.splitlines():
		parse_stream_line(line, result)
	return result
