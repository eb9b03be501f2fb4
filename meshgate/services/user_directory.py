"""
MeshGate — User Directory
=========================

What:  The notification service's read-only view of users.
How:   Asks the user service over the transport (`user.get`) and retries
       timeouts and dropped connections with the retry wrapper. The
       notification service never reads the users table.
"""

import logging
from typing import Optional

from meshgate.messaging.client import TransportClient
from meshgate.messaging.patterns import MessagePattern
from meshgate.messaging.retry import call_with_retry, is_transient_transport_error
from meshgate.schemas.user import UserResponse

logger = logging.getLogger(__name__)

LOOKUP_TIMEOUT = 5.0


class UserDirectory:
    def __init__(
        self,
        client: TransportClient,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.client = client
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def get_user(self, user_id: int) -> Optional[UserResponse]:
        """
        Returns:
            The user, or None when the user service has no such id

        Raises:
            TransportError: the user service could not be reached after retries
        """
        data = await call_with_retry(
            lambda: self.client.request(MessagePattern.USER_GET, {"id": user_id}, timeout=LOOKUP_TIMEOUT),
            retryable=is_transient_transport_error,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
        )
        if data is None:
            logger.info("User %s not found in user service", user_id)
            return None
        return UserResponse.model_validate(data)
