#!/usr/bin/env python3
"""
Create an admin account with an initial token grant.
Run from the project root: python -m scripts.create_admin <username> <email> <password> [admin|super_admin]
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import or_

from app.db.session import SessionLocal
from app.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN, User
from app.services.auth.jwt import hash_password
from app.services.ledger.service import LedgerService

INITIAL_TOKENS = 1000


def create_admin(db, username: str, email: str, password: str, role: str = ROLE_ADMIN) -> User | None:
    """Returns None when the username or email is already taken."""
    email = email.strip().lower()
    exists = db.query(User.id).filter(or_(User.username == username, User.email == email)).first()
    if exists:
        return None
    user = User(
        name=username,
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_verified=True,
        is_active=True,
        tokens=0,
    )
    db.add(user)
    db.commit()
    # Through the ledger so the balance matches the transaction sum
    LedgerService(db).add(user.id, INITIAL_TOKENS, "Initial admin tokens", category="admin_bonus")
    return user


def main():
    args = sys.argv[1:]
    if len(args) < 3:
        print("Usage: python -m scripts.create_admin <username> <email> <password> [role]")
        print("Example: python -m scripts.create_admin admin admin@example.com password123 super_admin")
        sys.exit(1)
    username, email, password = args[:3]
    role = args[3] if len(args) > 3 else ROLE_ADMIN
    if role not in (ROLE_ADMIN, ROLE_SUPER_ADMIN):
        print('Invalid role. Use "admin" or "super_admin"')
        sys.exit(1)

    db = SessionLocal()
    try:
        user = create_admin(db, username, email, password, role)
        if user is None:
            print("User already exists with this username or email")
            return
        print(f"{role.upper()} user created: {user.username} <{user.email}>")
        print(f"Initial tokens: {INITIAL_TOKENS}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
