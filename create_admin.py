#!/usr/bin/env python3
"""
Create or update an admin account for the library system.
Usage:
  python create_admin.py --email admin@example.com --password secret --name "Head Librarian"

This script must be run from the project root and will use the app's SQLAlchemy
configuration. It creates the account if missing; an existing account is
promoted to admin, approved, and given the provided password.
"""
import argparse
import sys

from werkzeug.security import generate_password_hash

# Import application factory
from app import create_app
from models import ROLE_ADMIN, db, User
from services.accounts import AccountService


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create or update an admin account')
    parser.add_argument('--email', '-e', required=True, help='admin email (login name)')
    parser.add_argument('--password', '-p', required=True, help='admin password')
    parser.add_argument('--name', '-n', default='Administrator', help='display name')
    parser.add_argument('--db-uri', help='optional DB URI to override app config')
    args = parser.parse_args(argv)

    config = {}
    if args.db_uri:
        config['SQLALCHEMY_DATABASE_URI'] = args.db_uri

    app = create_app(config)
    with app.app_context():
        db.create_all()
        email = args.email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if not user:
            AccountService().register(
                name=args.name,
                email=email,
                password=args.password,
                role=ROLE_ADMIN,
                allow_admin=True,
            )
            print(f"Created new admin account: {email}")
            return 0
        user.password_hash = generate_password_hash(args.password)
        user.role = ROLE_ADMIN
        user.is_approved = True
        db.session.commit()
        print(f"Updated existing account '{email}' to admin and set new password")
        return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except Exception as e:
        print('Error:', e)
        sys.exit(1)
