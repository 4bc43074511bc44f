"""Discord cogs for the arena bot."""
