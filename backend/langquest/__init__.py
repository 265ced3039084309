"""
LangQuest backend: a gamified language-learning service.
"""

__version__ = "1.0.0"
