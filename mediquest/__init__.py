"""
MediQuest AI Flows

AI-assisted scan analysis, report summarization, medicine lookup and
prescription-to-inventory matching for the MediQuest healthcare portal.
"""

__version__ = "1.0.0"
