import os
import streamlit as st
import requests
import pandas as pd

BASE_URL = st.secrets.get("backend_url", os.getenv("SETTLE_API_URL", "http://localhost:8000"))

st.title("Group Settlement Dashboard")

if "expenses" not in st.session_state:
    st.session_state.expenses = []

# Add Expense
st.header("Add Expense")
currency = st.text_input("Currency", value="PLN")
payer = st.text_input("Payer")
total_amount = st.number_input("Total Amount", min_value=0.0)
members = st.text_input("Split between (comma separated)")

if st.button("Add Expense"):
    names = [m.strip() for m in members.split(",") if m.strip()]
    if not payer or not names or total_amount <= 0:
        st.error("Payer, at least one member and a positive amount are required.")
    else:
        r = requests.post(f"{BASE_URL}/shares", json={
            "total_amount": str(total_amount),
            "split_type": "equal",
            "rows": [{"participant_id": n} for n in names],
        })
        if r.status_code == 200:
            st.session_state.expenses.append({
                "payer_id": payer.strip(),
                "total_amount": str(total_amount),
                "currency": currency,
                "splits": r.json()["splits"],
            })
            st.success(f"Added: {payer} paid {total_amount:.2f} {currency}")
        else:
            st.error(f"Error: {r.text}")

exp_df = pd.DataFrame([
    {
        "payer": e["payer_id"],
        "amount": e["total_amount"],
        "currency": e["currency"],
        "split between": ", ".join(str(s["participant_id"]) for s in e["splits"]),
    }
    for e in st.session_state.expenses
])
st.dataframe(exp_df)

# View Settlement
st.header("Final Settlement")
if st.button("Compute Settlement"):
    r = requests.post(f"{BASE_URL}/settlement", json={"expenses": st.session_state.expenses, "currency": currency})
    if r.status_code == 200:
        data = r.json()
        st.subheader("Net Balances")
        st.dataframe(pd.DataFrame([{"participant": k, "net": v} for k, v in data["net"].items()]))
        st.subheader("Settlements")
        st.dataframe(pd.DataFrame(data["settlements"]))
    else:
        st.error(f"Error: {r.text}")
