#!/usr/bin/env python3
"""
AutoRecon Settlement Service - Test Data Generator

Generates deterministic partner and transaction fixtures for exercising a
settlement run end to end through the API.

Generated datasets:
- 8 partners across marketplace, platform and payment processor types
- 50-250 transactions per partner over a 30-day period (sale, refund,
  chargeback, fee), fees between 2.9% and 3.9%
- A ready-to-post settlement run creation request
- One foreign-currency transaction set to trigger a currency mismatch

Usage:
    python scripts/generate_test_data.py
"""

import json
import random
from collections import Counter
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any

from faker import Faker

fake = Faker("en_US")
Faker.seed(42)
random.seed(42)

# Configuration
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"

RUN_CURRENCY = "USD"
PERIOD_DAYS = 30

PARTNERS = [
    {"id": "P001", "code": "AMZN", "name": "Amazon Marketplace", "type": "marketplace"},
    {"id": "P002", "code": "EBAY", "name": "eBay Inc", "type": "marketplace"},
    {"id": "P003", "code": "SHOP", "name": "Shopify Stores", "type": "platform"},
    {"id": "P004", "code": "PYPL", "name": "PayPal Holdings", "type": "payment_processor"},
    {"id": "P005", "code": "STRP", "name": "Stripe Inc", "type": "payment_processor"},
    {"id": "P006", "code": "SQRE", "name": "Square", "type": "payment_processor"},
    {"id": "P007", "code": "ETSY", "name": "Etsy Marketplace", "type": "marketplace"},
    {"id": "P008", "code": "WLMT", "name": "Walmart Marketplace", "type": "marketplace"},
]

# Refunds and chargebacks carry negative amounts
TRANSACTION_TYPES = {"sale": 80, "refund": 10, "chargeback": 5, "fee": 5}


def money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def generate_partners() -> list[dict[str, Any]]:
    """Attach a masked bank account to each partner."""
    return [
        {**partner, "bank_account": f"****{fake.random_number(digits=4, fix_len=True)}"}
        for partner in PARTNERS
    ]


def generate_transactions(partner_id: str, period_start: date, currency: str = RUN_CURRENCY) -> list[dict[str, Any]]:
    """Generate one partner's transactions for the period."""
    count = random.randint(50, 250)
    type_pool = [t for t, weight in TRANSACTION_TYPES.items() for _ in range(weight)]
    transactions = []

    for i in range(count):
        txn_type = random.choice(type_pool)
        amount = money(random.uniform(100, 10000))
        fee = (amount * Decimal(str(random.uniform(0.029, 0.039)))).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        if txn_type in ("refund", "chargeback"):
            amount = -amount
            fee = Decimal("0.00")
        elif txn_type == "fee":
            fee = amount
            amount = Decimal("0.00")

        transactions.append({
            "id": f"TXN-{partner_id}-{i + 1:04d}",
            "transaction_date": (period_start + timedelta(days=random.randint(0, PERIOD_DAYS - 1))).isoformat(),
            "type": txn_type,
            "amount": str(amount),
            "fee": str(fee),
            "currency": currency,
            "reference": f"REF-{fake.random_number(digits=6, fix_len=True)}",
            "description": f"Transaction {i + 1} for {partner_id}",
        })

    return transactions


def generate_run_request(partners: list[dict[str, Any]], period_start: date) -> dict[str, Any]:
    return {
        "period_start": period_start.isoformat(),
        "period_end": (period_start + timedelta(days=PERIOD_DAYS - 1)).isoformat(),
        "payment_method": "bank_transfer",
        "currency": RUN_CURRENCY,
        "partners": partners,
        "created_by": {"id": "U001", "name": fake.name(), "email": fake.company_email()},
        "notes": "Monthly settlement run with standard processing",
    }


def generate_summary(transactions: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    """Expected totals, computed the same way the aggregation engine does."""
    gross = sum((Decimal(t["amount"]) for txns in transactions.values() for t in txns), Decimal("0"))
    fees = sum((Decimal(t["fee"]) for txns in transactions.values() for t in txns), Decimal("0"))
    types = Counter(t["type"] for txns in transactions.values() for t in txns)
    return {
        "partners": len(transactions),
        "transactions": sum(len(txns) for txns in transactions.values()),
        "by_type": dict(sorted(types.items())),
        "total_gross_amount": str(gross),
        "total_fees": str(fees),
        "total_net_amount": str(gross - fees),
    }


def main():
    """Main function to generate all test data."""
    print("AutoRecon Settlement Service - Test Data Generator")
    print("=" * 55)

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    period_start = date(2025, 1, 1)

    print("\n1. Generating partners...")
    partners = generate_partners()
    print(f"   Generated {len(partners)} partners")

    print("\n2. Generating transactions...")
    transactions = {p["id"]: generate_transactions(p["id"], period_start) for p in partners}
    print(f"   Generated {sum(len(t) for t in transactions.values())} transactions")

    print("\n3. Generating currency mismatch set...")
    mismatch = {partners[0]["id"]: generate_transactions(partners[0]["id"], period_start, currency="EUR")[:5]}

    summary = generate_summary(transactions)
    outputs = {
        "settlement_run_request.json": generate_run_request(partners, period_start),
        "transactions.json": {"transactions": transactions},
        "transactions_currency_mismatch.json": {"transactions": mismatch},
        "data_summary.json": summary,
    }

    print("\n4. Saving files...")
    for filename, payload in outputs.items():
        path = DATA_DIR / filename
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        print(f"   Saved: {path}")

    print("\n" + "=" * 55)
    print("DATA GENERATION SUMMARY")
    print("=" * 55)
    print(f"\nPartners: {summary['partners']}")
    print(f"Transactions: {summary['transactions']}")
    print(f"  By type: {summary['by_type']}")
    print(f"Expected gross: {summary['total_gross_amount']}")
    print(f"Expected fees: {summary['total_fees']}")
    print(f"Expected net: {summary['total_net_amount']}")
    print("\n" + "=" * 55)
    print(f"Files saved to: {DATA_DIR}")
    print("=" * 55)


if __name__ == "__main__":
    main()
