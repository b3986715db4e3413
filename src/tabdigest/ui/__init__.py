"""Observer-side (panel) models."""

from .summary_panel import CONFIGURE_NOTICE, PanelState, SummaryPanel

__all__ = ["CONFIGURE_NOTICE", "PanelState", "SummaryPanel"]
