from __future__ import annotations

__all__: list[str] = ["ExternalListResult", "ExternalListService"]

from smartlists.integrations.external_lists import ExternalListResult, ExternalListService
