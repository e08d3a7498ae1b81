from .technical import TechnicalIndicators, VixCategory, categorize_vix

__all__ = ['TechnicalIndicators', 'VixCategory', 'categorize_vix']
