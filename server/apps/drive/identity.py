"""Identity verification against Django authentication.

Turns a caller's credentials into the owner every drive operation is
scoped to. Session handling and login screens live elsewhere.
"""

import logging
from typing import TYPE_CHECKING

from django.contrib.auth import authenticate
from django.http import HttpRequest

from server.apps.drive.exceptions import UnauthorizedError

if TYPE_CHECKING:
    from django.contrib.auth.models import User

logger = logging.getLogger(__name__)


def verify_credentials(
    username: str,
    password: str,
    request: HttpRequest | None = None,
) -> 'User':
    """Authenticate credentials and return the owning user.

    Args:
        username: Username of the caller.
        password: Password of the caller.
        request: Optional request, passed on to auth backends.

    Returns:
        Authenticated, active user.

    Raises:
        UnauthorizedError: If the credentials are wrong or the user
            is inactive.
    """
    logger.debug('Authenticating user: %s', username)

    user: User | None = authenticate(
        request=request,
        username=username,
        password=password,
    )

    if user is None:
        logger.warning('Authentication failed for user: %s', username)
        raise UnauthorizedError('Invalid credentials')

    if not user.is_active:
        logger.warning('Inactive user attempted access: %s', username)
        raise UnauthorizedError('Invalid credentials')

    logger.info('User authenticated successfully: %s', username)
    return user


def verify_user(user: 'User | None') -> 'User':
    """Check an already resolved user, e.g. ``request.user``.

    Args:
        user: User from the session layer, may be anonymous.

    Returns:
        The same user if authenticated and active.

    Raises:
        UnauthorizedError: If the user is missing, anonymous or inactive.
    """
    if user is None or not user.is_authenticated or not user.is_active:
        raise UnauthorizedError('Authentication required')
    return user
