"""Application services: baskets, checkout, orders, payments and webhooks."""
