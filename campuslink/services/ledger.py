"""Join-request ledger and its state machine.

The ledger wraps a project's ``join_requests`` collection.  Entries are only
ever appended or moved forward through ``TRANSITIONS``; nothing is deleted,
so the latest entry per user is the authority for duplicate and cooldown
checks.

::

    (none) --request--> pending --approve--> approved --remove--> removed
                              \\--deny-----> denied
"""

from datetime import datetime
from typing import Dict, Iterator, List, MutableSequence, Optional

from campuslink.errors import InvalidTransition
from campuslink.models.join_request import JoinAction, JoinRequest, RequestStatus

# Deny is legal from pending only, so an approved member always leaves via remove.
TRANSITIONS: Dict[tuple, RequestStatus] = {
    (RequestStatus.PENDING, JoinAction.APPROVE): RequestStatus.APPROVED,
    (RequestStatus.PENDING, JoinAction.DENY): RequestStatus.DENIED,
    (RequestStatus.APPROVED, JoinAction.REMOVE): RequestStatus.REMOVED,
}

_REJECTIONS = {
    JoinAction.APPROVE: (
        "This user was either denied or removed previously. "
        "They must send a new request to rejoin."
    ),
    JoinAction.DENY: "Only pending requests can be denied.",
    JoinAction.REMOVE: "Only approved members can be removed.",
}


def next_status(current: RequestStatus, action: JoinAction) -> RequestStatus:
    """Return the status ``action`` leads to, or raise ``InvalidTransition``."""
    target = TRANSITIONS.get((RequestStatus(current), action))
    if target is None:
        raise InvalidTransition(_REJECTIONS[action])
    return target


def apply_transition(
    entry: JoinRequest, action: JoinAction, now: Optional[datetime] = None
) -> JoinRequest:
    entry.status = next_status(entry.status, action)
    if entry.status is RequestStatus.REMOVED:
        entry.removal_time = now
    return entry


class JoinRequestLedger:
    """Keyed view over a project's join requests.

    ``entries`` is the ORM collection itself, so ``append`` lands the new
    row in the session together with the owning project.
    """

    def __init__(self, entries: MutableSequence[JoinRequest]):
        self._entries = entries
        self._by_id: Dict[int, JoinRequest] = {}
        self._latest_by_user: Dict[int, JoinRequest] = {}
        for entry in entries:
            self._index(entry)

    def _index(self, entry: JoinRequest) -> None:
        if entry.id is not None:
            self._by_id[entry.id] = entry
        # insertion order: a later entry always supersedes an earlier one
        self._latest_by_user[entry.user_id] = entry

    def __iter__(self) -> Iterator[JoinRequest]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, request_id: int) -> Optional[JoinRequest]:
        return self._by_id.get(request_id)

    def latest_for(self, user_id: int) -> Optional[JoinRequest]:
        return self._latest_by_user.get(user_id)

    def with_status(self, status: RequestStatus) -> List[JoinRequest]:
        return [e for e in self._entries if e.status == status]

    def pending_for(self, user_id: int) -> List[JoinRequest]:
        return [
            e for e in self._entries
            if e.user_id == user_id and e.status == RequestStatus.PENDING
        ]

    def approved_entry_for(self, user_id: int) -> Optional[JoinRequest]:
        for entry in reversed(self._entries):
            if entry.user_id == user_id and entry.status == RequestStatus.APPROVED:
                return entry
        return None

    def append(self, user_id: int, now: datetime) -> JoinRequest:
        entry = JoinRequest(user_id=user_id, status=RequestStatus.PENDING, request_time=now)
        self._entries.append(entry)
        self._index(entry)
        return entry
