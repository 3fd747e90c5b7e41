"""
clip-tagger - Personalized Audio Tagging Package

Main modules:
- database: SQLAlchemy ORM models, CRUD operations and the feedback store
- learning: Per-label online classifier, feature extraction and model export
- tagging: Oracle adapter, score blending and the tagging pipeline
- utils: Configuration management
"""

__version__ = "1.0.0"
