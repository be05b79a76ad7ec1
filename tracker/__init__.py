# Sandstorm Tracker
