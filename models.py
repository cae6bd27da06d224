from typing import List, Union
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, model_validator

ParticipantId = Union[int, str]

class ValueModel(BaseModel):
    model_config = ConfigDict(frozen=True)

# ============== Splits (who owes what for one expense) ==============
class Split(ValueModel):
    participant_id: ParticipantId
    owed_amount: Decimal

# ============== Payments (if more than one member paid) ==============
class Payment(ValueModel):
    payer_id: ParticipantId
    amount: Decimal

# ============== Expenses ==============
class Expense(ValueModel):
    payer_id: ParticipantId
    total_amount: Decimal
    currency: str = "PLN"
    splits: List[Split] = []
    payments: List[Payment] = []  # overrides payer_id crediting when present

# ============== Transactions (payment instructions) ==============
class Transaction(ValueModel):
    from_id: ParticipantId
    to_id: ParticipantId
    amount: Decimal = Field(gt=0)
    currency: str

    @model_validator(mode="after")
    def _distinct_sides(self):
        if self.from_id == self.to_id:
            raise ValueError("A transaction needs two different participants.")
        return self
