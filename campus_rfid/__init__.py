"""
Campus RFID Backend.
Badge-scan pipeline for attendance, security alerts, gamification and
live dashboards.
"""
__version__ = "1.0.0"
