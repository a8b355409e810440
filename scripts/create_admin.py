"""One-time bootstrap script to create an Admin user.

Usage:
  python scripts/create_admin.py --username admin --email admin@example.com --password Secret123
Or provide via env: ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD
"""
import os
import sys
import argparse
from getpass import getpass

from fulfillment_core.app.db import SessionLocal, create_db_and_tables
from fulfillment_core.app.security import PasswordPolicy, get_password_hash
from fulfillment_core.app import models


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--username')
    parser.add_argument('--email')
    parser.add_argument('--password')
    parser.add_argument('--full-name', default='Admin')
    args = parser.parse_args()

    username = args.username or os.getenv('ADMIN_USERNAME')
    email = args.email or os.getenv('ADMIN_EMAIL')
    password = args.password or os.getenv('ADMIN_PASSWORD')
    if not username:
        username = input('Username: ').strip()
    if not email:
        email = input('Email: ').strip()
    if not password:
        password = getpass('Password: ')

    ok, errors = PasswordPolicy.validate(password)
    if not ok:
        for error in errors:
            print(error, file=sys.stderr)
        sys.exit(1)

    create_db_and_tables()
    db = SessionLocal()
    try:
        existing = db.query(models.User).filter(models.User.username == username).first()
        if existing:
            print('User already exists:', username)
            return
        user = models.User(
            full_name=args.full_name,
            email=email,
            username=username,
            password_hash=get_password_hash(password),
            role='Admin'
        )
        db.add(user)
        db.commit()
        print('Created Admin user:', username)
    finally:
        db.close()


if __name__ == '__main__':
    main()
