from .errors import NotAuthorizedError
from .logger import setup_logger
from .models import UserAccount

logger = setup_logger(__name__)


class AccessPolicy:
    """Capability checks shared by the escrow and settlement engines.

    A single global admin flag gates event creation, locking and settlement.
    Event creators get no extra rights over their own events.
    """

    ADMIN_ACTIONS = frozenset({"create_event", "lock_event", "settle_event"})

    def is_allowed(self, caller: UserAccount, action: str) -> bool:
        if action in self.ADMIN_ACTIONS:
            return caller.is_admin
        return True

    def require(self, caller: UserAccount, action: str) -> None:
        if not self.is_allowed(caller, action):
            logger.debug(f"User {caller.id} denied {action}")
            raise NotAuthorizedError(f"User {caller.username} is not allowed to {action.replace('_', ' ')}")
