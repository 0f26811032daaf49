"""Core settlement logic: models, PnL math, auto-close rules and schemas.

This package contains pure business logic with no I/O dependencies
(no database, Redis, or network access). The service layer in
``settlement`` wires it to stores, price sources and webhooks.
"""
