import csv
from typing import List, Optional
from .models import Agent, Task, Point


def _point(x: str, y: str) -> Optional[Point]:
    if not (x or "").strip() or not (y or "").strip():
        return None
    return Point(float(x), float(y))


def _opt_float(v: str) -> Optional[float]:
    v = (v or "").strip()
    return float(v) if v else None


def load_agents(path: str) -> List[Agent]:
    out: List[Agent] = []
    with open(path, "r", encoding="utf-8") as f:
        r = csv.DictReader(f)
        for row in r:
            status = (row.get("status") or "idle").strip()
            if status == "busy":
                # assignments are made by dispatch, never loaded
                status = "idle"
            out.append(
                Agent(
                    agent_id=row["agent_id"],
                    name=row["name"],
                    status=status,  # type: ignore[arg-type]
                    position=_point(row.get("x", ""), row.get("y", "")),
                    earnings=float(row.get("earnings") or 0),
                    rating=_opt_float(row.get("rating", "")),
                    current_location=row.get("current_location", ""),
                )
            )
    return out


def load_tasks(path: str) -> List[Task]:
    out: List[Task] = []
    with open(path, "r", encoding="utf-8") as f:
        r = csv.DictReader(f)
        for row in r:
            items = [s.strip() for s in (row.get("items") or "").split(";") if s.strip()]
            out.append(
                Task(
                    task_id=row["task_id"],
                    customer=row["customer"],
                    address=row["address"],
                    amount=float(row["amount"]),
                    items=items,
                    position=_point(row.get("x", ""), row.get("y", "")),
                )
            )
    return out
