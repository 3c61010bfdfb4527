"""Storefront client core: validation, cart, checkout, and order history."""
