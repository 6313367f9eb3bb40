#!/usr/bin/env python3
"""
Create the default token packages that are missing.
Run from the project root: python -m scripts.seed_packages
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.services.payments.service import PaymentService


def main():
    db = SessionLocal()
    try:
        service = PaymentService(db)
        added = service.seed_default_packages()
        print(f"Token packages added: {added}")
        for package in service.list_active_packages():
            print(f"  {package.name}: {package.total_tokens} tokens for {package.price} {package.currency}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
