# agenda/routers/__init__.py
from . import health
from . import appointments
from . import recurrences
from . import availability
from . import public
from . import jobs

__all__ = ["health", "appointments", "recurrences", "availability", "public", "jobs"]
