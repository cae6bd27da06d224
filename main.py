from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from decimal import Decimal
import logging
import os

from models import Expense, Transaction, ParticipantId
from compute import (
    CurrencyMismatch, InputInconsistency, compute_balances, conservation_error,
    simplify_debts, consolidate, settle_expenses, participant_summary, round2,
)
from shares import compute_shares

# Settings come from the environment, example:
# export SETTLE_DEFAULT_CURRENCY="EUR"
DEFAULT_CURRENCY = os.getenv("SETTLE_DEFAULT_CURRENCY", "PLN")
LOG_LEVEL = os.getenv("SETTLE_LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Group Settlement API")

# ========== Request bodies ==========
class ExpenseIn(Expense):
    currency: str = DEFAULT_CURRENCY

class ExpensesIn(BaseModel):
    expenses: List[ExpenseIn]

class SettlementIn(BaseModel):
    expenses: List[ExpenseIn]
    currency: Optional[str] = None

class SimplifyIn(BaseModel):
    balances: Dict[str, Decimal]
    currency: str = DEFAULT_CURRENCY

class TransactionsIn(BaseModel):
    transactions: List[Transaction]

class SummaryIn(BaseModel):
    transactions: List[Transaction]
    participant_id: ParticipantId

class SharesIn(BaseModel):
    total_amount: Decimal
    split_type: str = "equal"
    rows: List[Dict[str, Any]]

# ========== Friendly format ==========
def net_out(net) -> Dict[str, str]:
    return {str(k): str(round2(v)) for k, v in net.items()}

def tx_out(transactions: List[Transaction]) -> List[dict]:
    return [{"from": t.from_id, "to": t.to_id, "amount": str(t.amount), "currency": t.currency}
            for t in transactions]

def reject(exc: Exception, status_code: int):
    logger.warning("Rejected settlement request: %s", exc)
    raise HTTPException(status_code=status_code, detail=str(exc))

# ========== Settlement endpoints ==========
@app.post("/balances")
def balances(payload: ExpensesIn):
    net = compute_balances(payload.expenses)
    return {
        "net": net_out(net),
        "currencies": sorted(net.currencies),
        "conservation_error": str(conservation_error(net)),
    }

@app.post("/simplify")
def simplify(payload: SimplifyIn):
    try:
        transactions = simplify_debts(payload.balances, payload.currency)
    except InputInconsistency as e:
        reject(e, 422)
    return {"settlements": tx_out(transactions)}

@app.post("/consolidate")
def consolidate_transactions(payload: TransactionsIn):
    try:
        transactions = consolidate(payload.transactions)
    except CurrencyMismatch as e:
        reject(e, 400)
    return {"settlements": tx_out(transactions)}

@app.post("/settlement")
def settlement(payload: SettlementIn):
    currency = payload.currency or DEFAULT_CURRENCY
    try:
        net, transactions = settle_expenses(payload.expenses, currency)
    except CurrencyMismatch as e:
        reject(e, 400)
    except InputInconsistency as e:
        reject(e, 422)
    return {"net": net_out(net), "settlements": tx_out(transactions)}

@app.post("/summary")
def summary(payload: SummaryIn):
    result = participant_summary(payload.transactions, payload.participant_id)
    return {k: str(v) for k, v in result.items()}

# ========== Split helper ==========
@app.post("/shares")
def shares(payload: SharesIn):
    try:
        splits = compute_shares(payload.total_amount, payload.split_type, payload.rows)
    except ValueError as e:
        reject(e, 400)
    return {"splits": [{"participant_id": s.participant_id, "owed_amount": str(s.owed_amount)} for s in splits]}
