"""
Art booth transformation service package.

Exposes the artistic pixel filters (pencil sketch, watercolor, oil
painting), the transformation engine, and the bounded-concurrency job
scheduler that runs them for the kiosk.
"""
