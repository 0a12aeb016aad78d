"""Cross-Selling Service package."""
