"""
Finalization policy evaluator.

Decides whether a thread's finalize condition is met, given an immutable
snapshot of the thread. Evaluation never touches the database: services build
an ``EvaluationContext`` from ORM rows (``EvaluationContext.from_thread``) and
hand it to ``evaluate``.

Each finalize policy is one strategy registered in ``POLICY_STRATEGIES``:
- organizer_decides: never met; the organizer always finalizes by hand
- quorum: met once the number of ok answers reaches quorum_count
- required_people: met once every required invitee is ok on a common slot
- all_required: met once every invitee is ok (on the same slot outside open_slots)

In open_slots mode, exhaustion of every non-cancelled slot is an additional,
policy-independent completion signal.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from convene.utils.datetime_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotSnapshot:
    id: UUID
    start_at: datetime
    end_at: datetime
    slot_status: str
    proposal_version: int
    booked_by_invite_id: Optional[UUID] = None


@dataclass(frozen=True)
class ResponseSnapshot:
    invite_id: UUID
    invitee_key: str
    answer: str
    selected_slot_id: Optional[UUID]
    response_version: int


@dataclass(frozen=True)
class PolicySnapshot:
    finalize_policy: str
    deadline_at: datetime
    quorum_count: Optional[int] = None
    required_invitee_keys: tuple = ()
    auto_finalize: bool = False


@dataclass(frozen=True)
class EvaluationContext:
    thread_id: UUID
    mode: str
    status: str
    current_version: int
    policy: PolicySnapshot
    slots: tuple
    responses: tuple
    invitee_keys: tuple
    now: datetime

    @classmethod
    def from_thread(cls, thread, *, slots, invites, responses, now: Optional[datetime] = None) -> "EvaluationContext":
        """
        Snapshot ORM rows. ``responses`` must already be each invite's latest
        response; answers from invites no longer on the thread are dropped.
        """
        policy = thread.policy
        key_by_invite = {invite.id: invite.invitee_key for invite in invites}
        return cls(
            thread_id=thread.id,
            mode=thread.mode,
            status=thread.status,
            current_version=thread.current_version,
            policy=PolicySnapshot(
                finalize_policy=policy.finalize_policy,
                deadline_at=ensure_aware(policy.deadline_at),
                quorum_count=policy.quorum_count,
                required_invitee_keys=tuple(policy.required_invitee_keys or ()),
                auto_finalize=bool(policy.auto_finalize),
            ),
            slots=tuple(
                SlotSnapshot(
                    id=slot.id,
                    start_at=ensure_aware(slot.start_at),
                    end_at=ensure_aware(slot.end_at),
                    slot_status=slot.slot_status,
                    proposal_version=slot.proposal_version,
                    booked_by_invite_id=slot.booked_by_invite_id,
                )
                for slot in slots
            ),
            responses=tuple(
                ResponseSnapshot(
                    invite_id=response.invite_id,
                    invitee_key=key_by_invite[response.invite_id],
                    answer=response.answer,
                    selected_slot_id=response.selected_slot_id,
                    response_version=response.response_version,
                )
                for response in responses
                if response.invite_id in key_by_invite
            ),
            invitee_keys=tuple(invite.invitee_key for invite in invites),
            now=ensure_aware(now) if now else utcnow(),
        )

    @property
    def deadline_passed(self) -> bool:
        return self.now > self.policy.deadline_at

    @property
    def active_slots(self) -> list[SlotSnapshot]:
        return [slot for slot in self.slots if slot.slot_status != "cancelled"]


@dataclass(frozen=True)
class Evaluation:
    met: bool
    reason: str
    recommended_slot_id: Optional[UUID] = None
    slots_exhausted: bool = False
    slots_remaining: int = 0
    invitee_count: int = 0
    responded_count: int = 0
    pending_count: int = 0
    ok_count: int = 0
    no_count: int = 0
    maybe_count: int = 0
    slot_ok_counts: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "met": self.met,
            "reason": self.reason,
            "recommended_slot_id": str(self.recommended_slot_id) if self.recommended_slot_id else None,
            "slots_exhausted": self.slots_exhausted,
            "slots_remaining": self.slots_remaining,
        }


@dataclass(frozen=True)
class Tally:
    """Answer counts derived from a context's latest responses."""

    invitee_count: int
    ok_count: int
    no_count: int
    maybe_count: int
    slot_ok_counts: dict
    ok_slot_by_key: dict

    @property
    def responded_count(self) -> int:
        return self.ok_count + self.no_count + self.maybe_count

    @property
    def pending_count(self) -> int:
        return max(self.invitee_count - self.responded_count, 0)

    @classmethod
    def from_context(cls, context: EvaluationContext) -> "Tally":
        active_ids = {slot.id for slot in context.active_slots}
        answers = Counter(response.answer for response in context.responses)
        slot_ok_counts = Counter(
            response.selected_slot_id
            for response in context.responses
            if response.answer == "ok" and response.selected_slot_id in active_ids
        )
        ok_slot_by_key = {
            response.invitee_key: response.selected_slot_id
            for response in context.responses
            if response.answer == "ok"
        }
        return cls(
            invitee_count=len(context.invitee_keys),
            ok_count=answers["ok"],
            no_count=answers["no"],
            maybe_count=answers["maybe"],
            slot_ok_counts=dict(slot_ok_counts),
            ok_slot_by_key=ok_slot_by_key,
        )


@dataclass(frozen=True)
class Verdict:
    met: bool
    reason: str
    recommended_slot_id: Optional[UUID] = None


def _earliest(context: EvaluationContext, slot_ids) -> Optional[UUID]:
    wanted = set(slot_ids)
    candidates = [slot for slot in context.active_slots if slot.id in wanted]
    if not candidates:
        return None
    return min(candidates, key=lambda slot: slot.start_at).id


def _earliest_booked(context: EvaluationContext, invite_keys=None) -> Optional[UUID]:
    invite_ids = None
    if invite_keys is not None:
        keys = set(invite_keys)
        invite_ids = {r.invite_id for r in context.responses if r.invitee_key in keys}
    booked = [
        slot.id
        for slot in context.active_slots
        if slot.slot_status == "booked" and (invite_ids is None or slot.booked_by_invite_id in invite_ids)
    ]
    return _earliest(context, booked)


class OrganizerDecidesPolicy:
    name = "organizer_decides"

    def evaluate(self, context: EvaluationContext, tally: Tally) -> Verdict:
        if context.deadline_passed:
            return Verdict(False, "deadline_passed_awaiting_organizer")
        return Verdict(False, "awaiting_organizer_decision")


class QuorumPolicy:
    name = "quorum"

    def evaluate(self, context: EvaluationContext, tally: Tally) -> Verdict:
        quorum = context.policy.quorum_count or 0
        progress = f"{tally.ok_count}/{quorum}"

        if quorum and tally.ok_count >= quorum:
            return Verdict(True, f"quorum_met: {progress}", self._recommend(context, tally, quorum))
        if context.deadline_passed:
            return Verdict(False, f"deadline_passed_quorum_not_met: {progress}")
        return Verdict(False, f"quorum_not_yet: {progress}")

    @staticmethod
    def _recommend(context: EvaluationContext, tally: Tally, quorum: int) -> Optional[UUID]:
        if context.mode == "open_slots":
            return _earliest_booked(context)

        quorate = {slot_id: count for slot_id, count in tally.slot_ok_counts.items() if count >= quorum}
        if not quorate:
            return None
        best = max(quorate.values())
        return _earliest(context, [slot_id for slot_id, count in quorate.items() if count == best])


class RequiredPeoplePolicy:
    name = "required_people"

    def evaluate(self, context: EvaluationContext, tally: Tally) -> Verdict:
        required = context.policy.required_invitee_keys
        if required and all(key in tally.ok_slot_by_key for key in required):
            if context.mode == "open_slots":
                return Verdict(True, "all_required_ok", _earliest_booked(context, required))

            chosen = {tally.ok_slot_by_key[key] for key in required}
            if len(chosen) == 1:
                return Verdict(True, "all_required_ok", _earliest(context, chosen))

        if context.deadline_passed:
            return Verdict(False, "deadline_passed_required_not_met")
        return Verdict(False, "required_not_yet")


class AllRequiredPolicy:
    name = "all_required"

    def evaluate(self, context: EvaluationContext, tally: Tally) -> Verdict:
        if tally.invitee_count and tally.ok_count == tally.invitee_count:
            if context.mode == "open_slots":
                return Verdict(True, "all_ok", _earliest_booked(context))

            chosen = set(tally.ok_slot_by_key.values())
            if len(chosen) == 1:
                return Verdict(True, "all_ok", _earliest(context, chosen))
            if not context.deadline_passed:
                return Verdict(False, f"no_common_slot: {len(chosen)}")

        if context.deadline_passed:
            return Verdict(False, "deadline_passed_not_all_ok")
        if tally.no_count:
            return Verdict(False, f"has_declines: {tally.no_count}")
        return Verdict(False, f"pending: {tally.invitee_count - tally.ok_count}")


POLICY_STRATEGIES = {
    strategy.name: strategy
    for strategy in (
        OrganizerDecidesPolicy(),
        QuorumPolicy(),
        RequiredPeoplePolicy(),
        AllRequiredPolicy(),
    )
}


def evaluate(context: EvaluationContext) -> Evaluation:
    """Evaluate the thread's finalize condition. Pure function of ``context``."""
    strategy = POLICY_STRATEGIES.get(context.policy.finalize_policy)
    if strategy is None:
        raise ValueError(f"Unknown finalize policy: {context.policy.finalize_policy}")

    tally = Tally.from_context(context)
    verdict = strategy.evaluate(context, tally)

    slots_exhausted = False
    slots_remaining = 0
    if context.mode == "open_slots":
        active = context.active_slots
        slots_remaining = sum(1 for slot in active if slot.slot_status != "booked")
        slots_exhausted = bool(active) and slots_remaining == 0
        if slots_exhausted:
            verdict = Verdict(True, "all_slots_filled", _earliest_booked(context))
        elif not verdict.met:
            verdict = Verdict(False, f"slots_remaining: {slots_remaining}")

    logger.debug(
        "Evaluated thread=%s policy=%s met=%s reason=%s",
        context.thread_id,
        context.policy.finalize_policy,
        verdict.met,
        verdict.reason,
    )

    return Evaluation(
        met=verdict.met,
        reason=verdict.reason,
        recommended_slot_id=verdict.recommended_slot_id,
        slots_exhausted=slots_exhausted,
        slots_remaining=slots_remaining,
        invitee_count=tally.invitee_count,
        responded_count=tally.responded_count,
        pending_count=tally.pending_count,
        ok_count=tally.ok_count,
        no_count=tally.no_count,
        maybe_count=tally.maybe_count,
        slot_ok_counts=tally.slot_ok_counts,
    )


def should_auto_finalize(context: EvaluationContext, evaluation: Evaluation) -> bool:
    """
    Whether a response write should confirm the thread on its own.

    open_slots threads auto-confirm only once every slot is filled; other modes
    need a met policy that also names a slot to confirm.
    """
    if not context.policy.auto_finalize or context.status != "sent":
        return False
    if context.mode == "open_slots":
        return evaluation.slots_exhausted
    return evaluation.met and evaluation.recommended_slot_id is not None
