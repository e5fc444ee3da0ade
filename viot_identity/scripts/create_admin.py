#!/usr/bin/env python3
# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Create the first admin user. Run: python -m viot_identity.scripts.create_admin"""

import asyncio
import getpass
import sys

from viot_identity.database import async_session_maker, init_db
from viot_identity.exceptions import AccountError
from viot_identity.models import Role
from viot_identity.services.accounts import register_identity
from viot_identity.services.identity import RegistrationData


async def main():
    await init_db()
    first_name = input("First name: ").strip()
    last_name = input("Last name: ").strip()
    email = input("Email: ").strip()
    phone_number = input("Phone number: ").strip()
    password = getpass.getpass("Password: ")

    data = RegistrationData(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone_number=phone_number,
        password=password,
        role=Role.ADMIN,
    )
    async with async_session_maker() as session:
        try:
            outcome = await register_identity(session, None, data, issued_by_admin=True)
        except AccountError as e:
            print(e.message)
            sys.exit(1)
    print(f"Admin user created with public id {outcome.user['public_id']}.")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
