"""
KitchenOff Billing Integrations

Turns paid storefront orders into invoices through the Smartbill
e-invoicing service (with a local fallback) and talks to the Sameday
shipping carrier.
"""

__version__ = "0.1.0"
