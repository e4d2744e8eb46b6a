"""Instrument scoring, weighting and gap suggestions."""
