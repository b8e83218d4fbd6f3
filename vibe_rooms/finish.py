# vibe_rooms/finish.py

import asyncio
import logging
import re
import threading
from typing import Callable, Dict, Optional

from vibe_rooms.errors import FinishWorkflowError, InvalidInputError
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import FinishRequest, FinishStatus
from vibe_rooms.report import generate_final_report

logger = logging.getLogger("vibe_rooms")

FINISH_INTENT = re.compile(
    r"\b(finish|done|complete|wrap up|end this|finalize|let's finish|i'm done|we're done)\b",
    re.IGNORECASE,
)


def detect_finish_intent(text: Optional[str]) -> bool:
    return bool(text) and FINISH_INTENT.search(text) is not None


class FinishWorkflow:
    """
    none -> pending -> approved | rejected

    A rejected request is closed for good, but it does not lock the room:
    a new request may be opened afterwards. An approved request ends the room.
    Transitions of one room run one at a time.
    """

    def __init__(self, store: EventStore, report_fn: Callable[[EventStore, str], dict] = generate_final_report):
        self.store = store
        self.report_fn = report_fn
        self._guard = threading.Lock()
        self._room_locks: Dict[str, threading.Lock] = {}

    def _room_lock(self, room_id: str) -> threading.Lock:
        with self._guard:
            lock = self._room_locks.get(room_id)
            if lock is None:
                lock = self._room_locks[room_id] = threading.Lock()
            return lock

    def request_finish(self, room_id: str, participant_id: str) -> FinishRequest:
        if not participant_id:
            raise InvalidInputError("participant_id is required")
        self.store.require_room(room_id)

        with self._room_lock(room_id):
            if self.store.find_finish(room_id, FinishStatus.PENDING) is not None:
                raise FinishWorkflowError("Finish request already pending")
            if self.store.find_finish(room_id, FinishStatus.APPROVED) is not None:
                raise FinishWorkflowError("Room already finished")

            request = self.store.insert_finish(room_id, participant_id)
        logger.info(f"[Finish] room {room_id}: finish requested by {participant_id}")
        return request

    def approve_finish(self, room_id: str, approver_id: str) -> FinishRequest:
        if not approver_id:
            raise InvalidInputError("participant_id is required")
        self.store.require_room(room_id)

        with self._room_lock(room_id):
            pending = self.store.find_finish(room_id, FinishStatus.PENDING)
            if pending is None:
                raise FinishWorkflowError("No pending finish request found")
            if pending.requester_id == approver_id:
                raise FinishWorkflowError("Cannot approve your own finish request")

            report = self.report_fn(self.store, room_id)
            self.store.update_finish(pending.id, final_report_json=report)
            approved = self.store.update_finish(
                pending.id, status=FinishStatus.APPROVED.value, approver_id=approver_id
            )
        logger.info(f"[Finish] room {room_id}: finish approved by {approver_id}")
        return approved

    def reject_finish(self, room_id: str, request_id: str) -> FinishRequest:
        with self._room_lock(room_id):
            request = self.store.get_finish(request_id)
            if request is None or request.room_id != room_id:
                raise FinishWorkflowError(f"Finish request not found: {request_id}")
            if request.status != FinishStatus.PENDING:
                raise FinishWorkflowError(f"Finish request is already {request.status.value}")

            rejected = self.store.update_finish(request_id, status=FinishStatus.REJECTED.value)
        logger.info(f"[Finish] room {room_id}: finish request {request_id} rejected")
        return rejected

    def finish_status(self, room_id: str) -> Optional[FinishRequest]:
        self.store.require_room(room_id)
        return self.store.latest_finish(room_id)

    # async wrappers for the HTTP layer

    async def arequest_finish(self, room_id: str, participant_id: str) -> FinishRequest:
        return await asyncio.to_thread(self.request_finish, room_id, participant_id)

    async def aapprove_finish(self, room_id: str, approver_id: str) -> FinishRequest:
        return await asyncio.to_thread(self.approve_finish, room_id, approver_id)

    async def areject_finish(self, room_id: str, request_id: str) -> FinishRequest:
        return await asyncio.to_thread(self.reject_finish, room_id, request_id)
