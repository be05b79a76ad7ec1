# Sandstorm Tracker - Parser components
