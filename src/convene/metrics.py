from prometheus_client import Counter

responses_recorded_total = Counter(
    "convene_responses_recorded_total",
    "Number of invitee responses persisted",
    ["mode", "answer"],
)

slot_claim_conflicts_total = Counter(
    "convene_slot_claim_conflicts_total",
    "Number of open-slot claims rejected because the slot was taken",
)

threads_finalized_total = Counter(
    "convene_threads_finalized_total",
    "Number of scheduling threads confirmed",
    ["trigger"],
)

reproposals_total = Counter(
    "convene_reproposals_total",
    "Number of successful reproposals",
)

notifier_failures_total = Counter(
    "convene_notifier_failures_total",
    "Number of events the notifier bridge failed to hand off",
    ["sink"],
)
