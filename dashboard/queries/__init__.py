"""
Read-side computations over the stored state.
"""
from .analytics import teacher_analytics
from .dashboard import dashboard_stats

__all__ = ['teacher_analytics', 'dashboard_stats']
