"""Identity and authorization lookups."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class IdentityService:
    def __init__(self, db):
        self.db = db

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        role = self.db["userrole"].find_one({"user_id": user_id, "role": ADMIN_ROLE})
        return role is not None

    def grant(self, user_id: str, role: str = ADMIN_ROLE) -> None:
        self.db["userrole"].update_one(
            {"user_id": user_id, "role": role},
            {"$set": {"user_id": user_id, "role": role}},
            upsert=True,
        )
        logger.info("Granted role %s to user %s", role, user_id)
