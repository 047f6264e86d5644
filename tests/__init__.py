"""Test package for the ParkSpeak hearing screening.

Core tests drive the staircase state machine with seeded RNGs; session
tests replace audio and storage with in-memory fakes. Audio tests use SDL's
dummy drivers so no device is opened. Run ``pytest`` from the project root.
"""
