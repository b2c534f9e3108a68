"""
API Routers

Webhook intake, order history and system / exchange control endpoints.
"""
