from __future__ import annotations

from smartlists.services.smart_lists import SmartListEvaluator

__all__: list[str] = [
    "SmartListEvaluator",
]
