# Sandstorm Tracker - Chat commands
