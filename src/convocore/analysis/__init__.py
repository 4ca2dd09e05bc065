# src/convocore/analysis/__init__.py
"""
Agent response analysis for convocore.
"""

from .base import BaseResponseAnalyzer
from .quality import KeywordResponseAnalyzer, extract_key_terms

__all__ = ["BaseResponseAnalyzer", "KeywordResponseAnalyzer", "extract_key_terms"]
