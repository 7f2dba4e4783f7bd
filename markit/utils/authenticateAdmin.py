from passlib.context import CryptContext

from markit.database.store import TreeStore

bcrypt_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def find_admin_id(email: str, store: TreeStore):
    credentials = store.read("credentials") or {}
    for admin_id, entry in credentials.items():
        if entry.get("email", "").lower() == email.lower():
            return admin_id
    return None


def authenticate_admin(email: str, password: str, store: TreeStore):
    admin_id = find_admin_id(email, store)
    if admin_id is None:
        return False

    hashed_password = store.read(f"credentials/{admin_id}/hashedPassword")
    if not hashed_password or not bcrypt_context.verify(password, hashed_password):
        return False
    return admin_id
