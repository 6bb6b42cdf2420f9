"""HTTP clients for the route and territory services."""

from .base import ServiceClient  # noqa: F401
from .routes import RouteServiceClient  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
from .territories import TerritoryServiceClient  # noqa: F401
