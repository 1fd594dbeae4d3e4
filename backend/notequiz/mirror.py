"""Client-held copy of quiz documents with optimistic progress predictions.

Each quiz id maps to the last server-confirmed document plus at most one
pending prediction of its progress. Readers see the prediction while it is
pending; ``confirm`` replaces the confirmed progress with the server's value
and ``rollback`` drops the prediction.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional

from .progress import advance_progress, retreat_progress
from .schemas import Progress, QuizOut


@dataclass
class MirrorEntry:
	confirmed: QuizOut
	pending: Optional[Progress] = None


class QuizMirror:
	def __init__(self) -> None:
		self._entries: Dict[str, MirrorEntry] = {}

	def load(self, quiz: QuizOut) -> None:
		self._entries[quiz.id] = MirrorEntry(confirmed=quiz)

	def forget(self, quiz_id: str) -> None:
		self._entries.pop(quiz_id, None)

	def confirmed(self, quiz_id: str) -> Optional[QuizOut]:
		entry = self._entries.get(quiz_id)
		return entry.confirmed if entry else None

	def view(self, quiz_id: str) -> Optional[QuizOut]:
		entry = self._entries.get(quiz_id)
		if entry is None:
			return None
		if entry.pending is None:
			return entry.confirmed
		return entry.confirmed.model_copy(update={"progress": entry.pending})

	def has_pending(self, quiz_id: str) -> bool:
		entry = self._entries.get(quiz_id)
		return entry is not None and entry.pending is not None

	def predict_advance(self, quiz_id: str, selected_option_id: str) -> Optional[Progress]:
		entry = self._entries.get(quiz_id)
		if entry is None:
			return None
		current = entry.pending or entry.confirmed.progress
		entry.pending, _ = advance_progress(current, entry.confirmed.questions, selected_option_id)
		return entry.pending

	def predict_retreat(self, quiz_id: str) -> Optional[Progress]:
		entry = self._entries.get(quiz_id)
		if entry is None:
			return None
		current = entry.pending or entry.confirmed.progress
		entry.pending, _ = retreat_progress(current, entry.confirmed.questions)
		return entry.pending

	def confirm(self, quiz_id: str, progress: Progress) -> None:
		entry = self._entries.get(quiz_id)
		if entry is None:
			return
		entry.confirmed = entry.confirmed.model_copy(update={"progress": progress})
		entry.pending = None

	def rollback(self, quiz_id: str) -> None:
		entry = self._entries.get(quiz_id)
		if entry is not None:
			entry.pending = None
