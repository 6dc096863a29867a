"""Business logic services for Emergency Connect."""
