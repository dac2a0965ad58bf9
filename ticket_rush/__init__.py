"""
Ticket Rush - grab-ticket orchestration engine
"""

__version__ = "1.0.0"
