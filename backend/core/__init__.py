"""Core shared logic for indicators, signals, consensus and the paper ledger.

This package contains pure business logic with no I/O dependencies
(no database or network access). The app/ package wires it to the
candle feed, storage and event channels.
"""
