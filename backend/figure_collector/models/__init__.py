from __future__ import annotations

from figure_collector.models.user import User  # noqa: F401
from figure_collector.models.figure import Figure  # noqa: F401
from figure_collector.models.auth import RefreshToken  # noqa: F401
