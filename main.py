#!/usr/bin/env python3
"""
Deal Desk Tax Engine - Entry Point

Calculates vehicle sales and lease tax for a dealership deal desk:
resolves the ZIP's jurisdictions, applies the state's rules, validates
the itemized breakdown and records it in an append-only audit trail.

Usage:
    python main.py calculate --price 30000 --trade-in 10000 --zip 35203 --state AL
    python main.py calculate --kind lease --price 40000 --residual 24000 --term 36 \\
        --money-factor 0.0025 --cash-down 3000 --zip 90210 --state CA
    python main.py calculate --request deal.json --json --audit-db data/audit.db
    python main.py rates --zip 60601
    python main.py rules --state MI --as-of 2024-06-01
    python main.py --audit-db data/audit.db audit --deal D-1001
"""

from dealtax.cli import main

if __name__ == "__main__":
    main()
