"""Flask extensions shared by the application factory and the API blueprint."""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Limits and storage are read from RATELIMIT_* settings in init_app
limiter = Limiter(key_func=get_remote_address)
