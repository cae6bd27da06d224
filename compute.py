"""
Settlement pipeline: expenses -> net balances -> payment instructions.

Every function here is pure. Inputs are read, fresh outputs are returned,
nothing is stored between calls, so groups can be settled concurrently
without locking.
"""
import heapq
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from decimal import Decimal, ROUND_HALF_UP

from models import Expense, Transaction, ParticipantId

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.01")
ZERO = Decimal("0")

# ============== Errors ==============
class SettlementError(ValueError):
    pass

class InputInconsistency(SettlementError):
    """Money was not conserved upstream (e.g. splits not summing to the expense total)."""

    def __init__(self, residues: Mapping[ParticipantId, Decimal], message: Optional[str] = None):
        self.residues = dict(residues)
        if message is None:
            details = ", ".join(f"{pid}: {amt}" for pid, amt in self.residues.items())
            message = f"Unsettled residue after simplification ({details}); balances do not sum to zero."
        super().__init__(message)

class CurrencyMismatch(SettlementError):
    def __init__(self, currencies: Iterable[str]):
        self.currencies = sorted(currencies)
        super().__init__(f"Cannot settle across currencies: {', '.join(self.currencies)}.")

# ============== Helpers ==============
def to_dec(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))

def round2(d: Decimal) -> Decimal:
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def is_settled(amount) -> bool:
    return abs(to_dec(amount)) < EPSILON

def _as_expense(e) -> Expense:
    return e if isinstance(e, Expense) else Expense.model_validate(e)

def _as_transaction(t) -> Transaction:
    return t if isinstance(t, Transaction) else Transaction.model_validate(t)

def _payers(expense: Expense) -> List[Tuple[ParticipantId, Decimal]]:
    if expense.payments:
        return [(p.payer_id, to_dec(p.amount)) for p in expense.payments]
    return [(expense.payer_id, to_dec(expense.total_amount))]

# ============== Balances ==============
class Balance(dict):
    """
    participant_id -> signed amount (positive: is owed, negative: owes).
    `currencies` holds the currency codes of the expenses it was built from.
    """

    def __init__(self, *args, currencies: Iterable[str] = (), **kwargs):
        super().__init__(*args, **kwargs)
        self.currencies = frozenset(currencies)

def compute_balances(expenses: Iterable[Expense]) -> Balance:
    """
    Net balance per participant over all expenses.

    The payer is credited with the full amount (or each payer with their own
    payment for multi-payer expenses) and every split participant is debited
    with their owed amount. Malformed expenses never raise here; a split total
    that disagrees with the expense total is only logged.
    """
    net = Balance()
    currencies = set()
    for raw in expenses:
        exp = _as_expense(raw)
        currencies.add(exp.currency)
        total = to_dec(exp.total_amount)

        net.setdefault(exp.payer_id, ZERO)
        for pid, paid in _payers(exp):
            net.setdefault(pid, ZERO)
            net[pid] += paid

        owed_sum = ZERO
        for s in exp.splits:
            owed = to_dec(s.owed_amount)
            net.setdefault(s.participant_id, ZERO)
            net[s.participant_id] -= owed
            owed_sum += owed

        if abs(owed_sum - total) >= EPSILON:
            logger.warning("Expense paid by %s: splits sum to %s but total is %s.", exp.payer_id, owed_sum, total)
        if exp.payments:
            paid_sum = sum((to_dec(p.amount) for p in exp.payments), ZERO)
            if abs(paid_sum - total) >= EPSILON:
                logger.warning("Expense paid by %s: payments sum to %s but total is %s.", exp.payer_id, paid_sum, total)

    net.currencies = frozenset(currencies)
    return net

def conservation_error(balances: Mapping[ParticipantId, Decimal]) -> Decimal:
    return sum((to_dec(v) for v in balances.values()), ZERO)

def check_conservation(balances: Mapping[ParticipantId, Decimal]) -> None:
    err = conservation_error(balances)
    if abs(err) >= EPSILON:
        residues = {pid: to_dec(v) for pid, v in balances.items() if not is_settled(v)}
        raise InputInconsistency(residues, f"Balances sum to {err} instead of zero.")

# ============== Debt simplification ==============
class DebtEntry:
    """Working amount of one debtor or creditor during a single simplification run."""

    __slots__ = ("participant_id", "remaining")

    def __init__(self, participant_id: ParticipantId, remaining: Decimal):
        self.participant_id = participant_id
        self.remaining = remaining

    # largest remaining first, then lowest participant id; int ids sort before str ids
    def sort_key(self):
        return (-self.remaining, type(self.participant_id).__name__, self.participant_id)

    def __lt__(self, other: "DebtEntry") -> bool:
        return self.sort_key() < other.sort_key()

    def __repr__(self):
        return f"DebtEntry({self.participant_id!r}, {self.remaining})"

def _check_currency(balances, currency: str) -> None:
    currencies = getattr(balances, "currencies", frozenset())
    if len(currencies) > 1 or (currencies and currency not in currencies):
        raise CurrencyMismatch(set(currencies) | {currency})

def simplify_debts(balances: Mapping[ParticipantId, Decimal], currency: str = "PLN") -> List[Transaction]:
    """
    Turn net balances into payment instructions by repeatedly matching the
    largest debtor with the largest creditor.

    Each step settles at least one side completely, so N participants with a
    non-zero balance produce at most N-1 transactions. This is not the global
    minimum number of transactions; finding that is a subset-partition problem.

    Emitted amounts are rounded to 2 places, the working amounts are not.
    Raises CurrencyMismatch for a Balance built from other currencies and
    InputInconsistency when the balances do not cancel out.
    """
    _check_currency(balances, currency)

    debtors: List[DebtEntry] = []
    creditors: List[DebtEntry] = []
    for pid, amt in balances.items():
        amt = to_dec(amt)
        if amt <= -EPSILON:
            debtors.append(DebtEntry(pid, -amt))
        elif amt >= EPSILON:
            creditors.append(DebtEntry(pid, amt))
    heapq.heapify(debtors)
    heapq.heapify(creditors)

    transactions = []
    while debtors and creditors:
        debtor = heapq.heappop(debtors)
        creditor = heapq.heappop(creditors)

        # both heads are at least EPSILON, so settle is too
        settle = min(debtor.remaining, creditor.remaining)
        tx = Transaction(from_id=debtor.participant_id, to_id=creditor.participant_id,
                         amount=round2(settle), currency=currency)
        logger.debug("Settle %s -> %s: %s %s", tx.from_id, tx.to_id, tx.amount, currency)
        transactions.append(tx)

        debtor.remaining -= settle
        creditor.remaining -= settle
        if debtor.remaining >= EPSILON:
            heapq.heappush(debtors, debtor)
        if creditor.remaining >= EPSILON:
            heapq.heappush(creditors, creditor)

    if debtors or creditors:
        residues = {d.participant_id: -d.remaining for d in sorted(debtors)}
        residues.update((c.participant_id, c.remaining) for c in sorted(creditors))
        raise InputInconsistency(residues)
    return transactions

# ============== Consolidation ==============
def consolidate(transactions: Iterable[Transaction]) -> List[Transaction]:
    """
    Merge transactions between the same ordered (from, to) pair and drop sums
    below EPSILON.

    Only parallel edges are merged. Reverse edges (A->B and B->A) are kept
    apart and cycles such as A->B->C->A are not cancelled; that would need a
    cycle-elimination pass over the payment graph.
    """
    transactions = [_as_transaction(t) for t in transactions]
    currencies = {t.currency for t in transactions}
    if len(currencies) > 1:
        raise CurrencyMismatch(currencies)

    graph: Dict[Tuple[ParticipantId, ParticipantId], Decimal] = {}
    for t in transactions:
        key = (t.from_id, t.to_id)
        graph[key] = graph.get(key, ZERO) + t.amount

    consolidated = []
    for (from_id, to_id), amount in graph.items():
        if amount >= EPSILON:
            consolidated.append(Transaction(from_id=from_id, to_id=to_id,
                                            amount=round2(amount), currency=transactions[0].currency))
    return consolidated

# ============== Pipeline and reporting ==============
def settle_expenses(expenses: Iterable[Expense], currency: str = "PLN") -> Tuple[Balance, List[Transaction]]:
    net = compute_balances(expenses)
    return net, consolidate(simplify_debts(net, currency))

def apply_transactions(balances: Mapping[ParticipantId, Decimal],
                       transactions: Iterable[Transaction]) -> Dict[ParticipantId, Decimal]:
    """Balances after every payment is made: the payer's debt shrinks, the receiver's claim shrinks."""
    after = {pid: to_dec(v) for pid, v in balances.items()}
    for t in transactions:
        t = _as_transaction(t)
        after[t.from_id] = after.get(t.from_id, ZERO) + t.amount
        after[t.to_id] = after.get(t.to_id, ZERO) - t.amount
    return after

def participant_summary(transactions: Iterable[Transaction], participant_id: ParticipantId) -> Dict[str, Decimal]:
    to_pay = to_receive = ZERO
    for t in transactions:
        t = _as_transaction(t)
        if t.from_id == participant_id:
            to_pay += t.amount
        elif t.to_id == participant_id:
            to_receive += t.amount
    return {"to_pay": to_pay, "to_receive": to_receive, "balance": to_receive - to_pay}

def related_expenses(expenses: Iterable[Expense], transaction: Transaction) -> List[Expense]:
    """Expenses where one side of the transaction paid and the other side had a split."""
    transaction = _as_transaction(transaction)
    sides = (transaction.from_id, transaction.to_id)
    related = []
    for raw in expenses:
        exp = _as_expense(raw)
        payer_ids = {pid for pid, _ in _payers(exp)}
        split_ids = {s.participant_id for s in exp.splits}
        if any(payer in payer_ids and other in split_ids
               for payer, other in (sides, sides[::-1])):
            related.append(exp)
    return related
