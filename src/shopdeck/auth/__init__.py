"""Session credentials.

Learn: The admin talks to the backend with a short-lived access token and a
long-lived refresh token. This package owns where that pair lives:
- storage.py → where bytes go (memory or a JSON file on disk)
- tokens.py → the TokenPair and the repository every request reads from
"""
