from bracketdesk.core.drag.reconcile import (
    DragDetection,
    DragReconciler,
    LegAdjustment,
    needs_modify,
)

__all__ = ["DragDetection", "DragReconciler", "LegAdjustment", "needs_modify"]
