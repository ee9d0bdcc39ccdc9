# /chathub/utils/rate_limiter.py

from slowapi import Limiter

from chathub.config.settings import settings
from chathub.utils.request_utils import get_remote_address

# Shared limiter instance; main.py and the route modules both import it here.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    enabled=settings.environment != "test",
)
