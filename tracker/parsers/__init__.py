# Sandstorm Tracker - Parsers
# Parser module exports
from .event_parser import EventParser
from .unified_log_parser import UnifiedLogParser

__all__ = ['EventParser', 'UnifiedLogParser']
