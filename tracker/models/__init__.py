# Sandstorm Tracker - Models
