"""
billing_services -- outer surfaces around the billing kernel.

The request/response boundary (``invoice_api``), exports, the
administrative reset and the ``billing`` command line.
"""
