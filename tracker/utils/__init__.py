# Sandstorm Tracker - Utilities
