"""
Shared crawl-state structures.
"""

from .duplicate_detector import DuplicateDetector, normalize_url

__all__ = ['DuplicateDetector', 'normalize_url']
