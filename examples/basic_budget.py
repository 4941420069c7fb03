# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
basic_budget.py

Demonstrates one month of envelope budgeting for a household:
  1. Record income and give every euro a job.
  2. Record expenses, including one split across two envelopes.
  3. Move money between envelopes when plans change.
  4. Roll the month over and inspect what was carried.

Run with:  python examples/basic_budget.py
(from the repository root with envelope-ledger installed)
"""

from datetime import date

from envelope_ledger import BudgetLedger, LedgerScope

MARCH = "2026-03"
APRIL = "2026-04"

# ─── Setup ────────────────────────────────────────────────────────────────────

ledger = BudgetLedger(scope=LedgerScope(user_id="camille", household_id="maison"))
ledger.subscribe(lambda event: print(f"  · {event.kind}"))

ledger.add_income(MARCH, "2400,00", description="Salaire", date=date(2026, 3, 1))

courses = ledger.create_envelope(MARCH, "Courses", icon="ShoppingCart", color="green", category="essential")
loyer = ledger.create_envelope(MARCH, "Loyer", icon="Home", color="blue", category="essential")
vacances = ledger.create_envelope(
    MARCH, "Vacances", icon="Plane", color="orange", category="savings", rollover=True
)
loisirs = ledger.create_envelope(
    MARCH,
    "Loisirs",
    icon="Gamepad2",
    color="purple",
    rollover=True,
    rollover_strategy="percentage",
    rollover_percentage=50,
)

ledger.allocate(MARCH, loyer.id, "900")
ledger.allocate(MARCH, courses.id, "450")
ledger.allocate(MARCH, loisirs.id, "150")
ledger.allocate(MARCH, vacances.id, "300")
ledger.create_goal(vacances.id, "1500", target_date=date(2026, 8, 1), name="Été à Lisbonne")

print(f"\nTo be budgeted: {ledger.to_be_budgeted(MARCH)}")

# ─── Expenses ─────────────────────────────────────────────────────────────────

ledger.add_transaction(MARCH, loyer.id, "900", description="Loyer mars", date=date(2026, 3, 2))

for amount in ["82,15", "97,40", "110,05", "96,30"]:
    result = ledger.add_transaction(MARCH, courses.id, amount, merchant="Marché")
    if result.alert is not None:
        print(f"Alert on {result.alert.envelope_name}: {result.alert.level} at {result.alert.percent_used}%")

split = ledger.add_split_transaction(
    MARCH,
    "64.00",
    [(courses.id, "40.00"), (loisirs.id, "24.00")],
    description="Supermarché et cinéma",
)
for alert in split.alerts:
    print(f"Alert on {alert.envelope_name}: {alert.level} at {alert.percent_used}%")

# ─── Move money where it is needed ────────────────────────────────────────────

transfer = ledger.transfer(MARCH, loisirs.id, courses.id, "30")
print(f"Moved {transfer.amount} from Loisirs to Courses")

# ─── Activity and undo ────────────────────────────────────────────────────────

ledger.transfer(MARCH, courses.id, loisirs.id, "5")
mistake = ledger.list_activity(limit=1)[0]
ledger.undo_activity(mistake.id)
print(f"Undid {mistake.action} of {mistake.details['amount']}")

print("\nRecent activity:")
for entry in ledger.list_activity(limit=5):
    undone = " (undone)" if entry.undone_at else ""
    print(f"  {entry.action:<16} {entry.details.get('amount', '')}{undone}")

# ─── Month summary ────────────────────────────────────────────────────────────

summary = ledger.period_summary(MARCH)

print("\n── March summary ─────────────────────────────────────")
for envelope in summary.envelopes:
    marker = "  OVERSPENT" if envelope.overspent else ""
    print(
        f"  {envelope.name:<10} allocated={envelope.allocated:>8}  "
        f"spent={envelope.spent:>8}  available={envelope.available:>8}{marker}"
    )
print(f"  To be budgeted : {summary.to_be_budgeted}")
print("──────────────────────────────────────────────────────")

# ─── Rollover ─────────────────────────────────────────────────────────────────

report = ledger.copy_envelopes_to_month(MARCH, APRIL)
print(f"\nCarried {report.total_carried} into {APRIL}:")
for carry in report.carried:
    capped = " (capped)" if carry.is_capped else ""
    print(f"  {carry.envelope_name:<10} {carry.strategy:<10} {carry.amount}{capped}")

progress = ledger.goal_progress(APRIL, vacances.id)
print(f"\nGoal progress: {progress.percent_complete}% of {progress.target_amount}")
if progress.suggested_monthly is not None:
    print(f"Suggested monthly contribution: {progress.suggested_monthly}")
