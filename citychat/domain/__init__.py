"""Domain packages for the chat client engine."""
