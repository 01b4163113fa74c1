"""SQLite-backed work queue for clue rewriting.

Why not a broker?
~~~~~~~~~~~~~~~~~
Work items already live in the ``questions`` table and the run is a single
process on a single machine. The ``processing_status`` column is the lock:
claim, commit and release are each one ``BEGIN IMMEDIATE`` transaction, so no
item can sit in two outstanding batches, and a crash leaves nothing worse than
``claimed`` rows that the next start resets.
"""
