"""Peril: a turn-based strategy game whose processes talk through perilbus."""
