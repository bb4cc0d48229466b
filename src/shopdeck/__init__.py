"""Shopdeck — client core for the storefront admin.

The pieces every admin surface leans on: token storage, the authenticated
request pipeline with single-flight refresh, and the realtime event channel
that pushes notifications and inventory changes to the UI.
"""

__version__ = "0.1.0"
