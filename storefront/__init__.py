"""Storefront order and payment lifecycle service."""
