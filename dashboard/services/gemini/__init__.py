"""
Gemini Service Module

Coaching report generation for the student view.
"""
from .client import FallbackReportGenerator, GeminiReportGenerator, extract_json, get_report_generator

__all__ = ['FallbackReportGenerator', 'GeminiReportGenerator', 'extract_json', 'get_report_generator']
