from typing import List
from decimal import Decimal

from compute import EPSILON, ZERO, to_dec, round2
from models import Split

SPLIT_TYPES = ("equal", "exact", "percentage", "shares")
PERCENT_TOLERANCE = Decimal("0.1")

def _fix_last(total: Decimal, splits: List[Split]) -> List[Split]:
    # rounding residue goes to the last row so the splits add up to the total
    diff = round2(total - sum((s.owed_amount for s in splits), ZERO))
    last = splits[-1]
    splits[-1] = Split(participant_id=last.participant_id, owed_amount=round2(last.owed_amount + diff))
    return splits

def _weighted(total: Decimal, rows: List[dict], weights: List[Decimal]) -> List[Split]:
    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        raise ValueError("Weights must add up to more than zero.")
    splits = [Split(participant_id=r["participant_id"], owed_amount=round2(total * w / weight_sum))
              for r, w in zip(rows, weights)]
    return _fix_last(total, splits)

def compute_shares(total_amount, split_type: str, rows: List[dict]) -> List[Split]:
    """
    rows: list of {participant_id, owed_amount | percentage | shares}
      equal      -> split equally among the rows
      exact      -> use owed_amount values (must sum to total)
      percentage -> percentage of the total per row (must sum to 100)
      shares     -> proportional to each row's share count
    Returns the Split list for one expense.
    """
    total = to_dec(total_amount)
    if not rows:
        raise ValueError("No participants to split among.")
    if any("participant_id" not in r for r in rows):
        raise ValueError("Every row needs a participant_id.")
    if split_type not in SPLIT_TYPES:
        raise ValueError(f"Unknown split type {split_type!r}; expected one of {', '.join(SPLIT_TYPES)}.")

    if split_type == "equal":
        per = round2(total / len(rows))
        return _fix_last(total, [Split(participant_id=r["participant_id"], owed_amount=per) for r in rows])

    if split_type == "exact":
        splits = []
        for r in rows:
            amt = r.get("owed_amount")
            if amt is None:
                raise ValueError("Every row needs an owed_amount for an exact split.")
            splits.append(Split(participant_id=r["participant_id"], owed_amount=round2(to_dec(amt))))
        ssum = sum((s.owed_amount for s in splits), ZERO)
        if abs(ssum - total) > EPSILON:
            raise ValueError(f"Sum of owed amounts ({ssum}) != total ({total}).")
        return splits

    key = "percentage" if split_type == "percentage" else "shares"
    if any(r.get(key) is None for r in rows):
        raise ValueError(f"Every row needs a {key} value for a {split_type} split.")
    weights = [to_dec(r[key]) for r in rows]
    if any(w < 0 for w in weights):
        raise ValueError(f"Negative {key} values are not allowed.")
    if split_type == "percentage" and abs(sum(weights, ZERO) - 100) > PERCENT_TOLERANCE:
        raise ValueError(f"Percentages add up to {sum(weights, ZERO)}, not 100.")
    return _weighted(total, rows, weights)
