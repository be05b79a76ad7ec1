"""
Sandstorm Tracker - Custom Exceptions
Exception hierarchy shared by the tracker components
"""

class TrackerException(Exception):
    """Base exception for the tracker"""
    pass

class DatabaseException(TrackerException):
    """Database operation failed"""
    pass

class ValidationException(TrackerException):
    """Input validation failed"""
    pass

class ParserException(TrackerException):
    """Log parsing failed"""
    pass

class TimestampParseError(ParserException):
    """Engine timestamp could not be parsed"""
    pass

class ConfigurationException(TrackerException):
    """Configuration error"""
    pass

class WatchException(TrackerException):
    """Watched log file or directory could not be read"""
    pass
