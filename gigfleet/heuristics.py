from __future__ import annotations

from typing import List, Tuple

from .models import Agent, Task, Job
from .geo import plane_distance
from .schemas import Assignment, StackAnalysis


def greedy_assignments(agents: List[Agent], tasks: List[Task]) -> List[Assignment]:
    """Nearest idle agent per pending task, tasks in queue order, each agent used once."""
    pool = [a for a in agents if a.status == "idle" and a.position is not None]
    out: List[Assignment] = []

    for t in tasks:
        if not pool:
            break
        if t.status != "pending" or t.position is None:
            continue

        best = min(pool, key=lambda a: plane_distance(a.position, t.position))  # type: ignore[arg-type]
        out.append(Assignment(orderId=t.task_id, driverId=best.agent_id))
        pool.remove(best)

    return out


def nearest_first_route(jobs: List[Job]) -> List[Job]:
    # shortest legs first; better pay/mile wins a tie
    return sorted(jobs, key=lambda j: (j.distance, -j.pay_per_mile))


def _rating(pay: float, miles: float, high: float, medium: float) -> str:
    ppm = pay / miles if miles > 0 else 0.0
    if ppm >= high:
        return "High"
    if ppm >= medium:
        return "Medium"
    return "Low"


def pay_per_mile_stack(
    jobs: List[Job],
    min_pay_per_mile: float = 1.5,
    high: float = 2.0,
    medium: float = 1.5,
) -> StackAnalysis:
    if not jobs:
        raise ValueError("No jobs to analyze")

    ranked = sorted(jobs, key=lambda j: -j.pay_per_mile)
    keep = [j for j in ranked if j.pay_per_mile >= min_pay_per_mile] or ranked[:1]
    dropped = [j for j in ranked if j not in keep]

    pay = round(sum(j.pay for j in keep), 2)
    miles = round(sum(j.distance for j in keep), 2)
    lead = keep[0]

    reasoning = f"Kept {len(keep)} of {len(jobs)} jobs at ${min_pay_per_mile:.2f}/mi or better."
    if dropped:
        reasoning += " Dropped: " + ", ".join(j.restaurant or j.job_id for j in dropped) + "."

    return StackAnalysis(
        recommendedJobIds=[j.job_id for j in keep],
        reasoning=reasoning,
        totalProjectedPay=pay,
        totalDistance=miles,
        efficiencyRating=_rating(pay, miles, high, medium),  # type: ignore[arg-type]
        strategyTip=f"Pickup {lead.restaurant or lead.job_id} first.",
    )


def split_known(ordered_ids: List[str], jobs: List[Job]) -> Tuple[List[Job], List[Job]]:
    """Jobs in the order given by `ordered_ids` (unknown/duplicate ids dropped), then the rest."""
    by_id = {j.job_id: j for j in jobs}
    seen = set()
    ordered: List[Job] = []
    for jid in ordered_ids:
        if jid in by_id and jid not in seen:
            seen.add(jid)
            ordered.append(by_id[jid])
    rest = [j for j in jobs if j.job_id not in seen]
    return ordered, rest
