import os
from datetime import datetime, timedelta, timezone

import jwt
from dotenv import load_dotenv

from creatorpass.core.config import Settings
from creatorpass.domain.errors import InvalidArgument
from creatorpass.domain.models import Account, Role
from creatorpass.infrastructure.persistence.sqlite import SQLitePersistence


def main() -> None:
    load_dotenv()
    settings = Settings()

    account_id = os.getenv("ACCOUNT_ID") or input("Account id: ").strip()
    if not account_id:
        raise RuntimeError("An account id is required.")
    email = input("Email (optional): ").strip() or None
    username = input("Username (optional): ").strip() or None
    try:
        role = Role.parse(input("Role [viewer/creator/admin] (viewer): ").strip() or Role.VIEWER)
    except InvalidArgument as exc:
        raise RuntimeError(exc.message) from exc

    store = SQLitePersistence(settings.database_path)
    try:
        account = store.save_account(Account(id=account_id, email=email, username=username, role=role))
    finally:
        store.close()

    expires = datetime.now(timezone.utc) + timedelta(days=30)
    token = jwt.encode(
        {"sub": account.id, "role": account.role.value, "exp": expires},
        settings.principal_token_secret,
        algorithm=settings.principal_token_algorithm,
    )
    print(f"Account {account.id} saved as {account.role.value} in {settings.database_path}")
    print("Bearer token (valid 30 days):")
    print(token)


if __name__ == "__main__":
    main()
