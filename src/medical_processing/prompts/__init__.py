# src/medical_processing/prompts/__init__.py
"""
Prompt templates and report type classification
"""

from .classification import classify_report_type, determine_report_type
from .report_prompts import REPORT_PROMPTS, get_prompt
