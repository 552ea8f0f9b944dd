"""SmartLists: rule-based smart playlist and collection evaluation engine."""

from __future__ import annotations

from smartlists.version import __version__

__all__: list[str] = ["__version__"]
