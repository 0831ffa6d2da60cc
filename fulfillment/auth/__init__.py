# Package exports - these allow cleaner imports like:
# from fulfillment.auth import get_current_user, require_admin
from fulfillment.auth.jwt_validator import jwt_validator
from fulfillment.auth.dependencies import get_current_user, get_optional_user, require_admin
