"""Voting domain services: vote ledger, consensus, timers and the coordinator.

This package holds the estimation-round logic imported by HTTP routes and
socket handlers, keeping transport concerns separated from session
mechanics.
"""

from flask import current_app


def get_coordinator():
    return current_app.extensions['voting_coordinator']


def get_gatekeeper():
    return current_app.extensions['voting_coordinator'].gatekeeper
