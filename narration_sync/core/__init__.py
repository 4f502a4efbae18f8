"""Core engine modules: models, estimator, store, sync, captions, orchestrator.

WHY: The core package holds everything with real invariants — segment
ordering, sync derivation, caption timing and regeneration bookkeeping.
It has no HTTP or file I/O, so every rule here is unit-testable.

HOW: models.py defines the data structures, store.py owns and mutates
them, sync.py and captions.py derive read-only views, orchestrator.py is
the only writer of voice assets, chunking.py builds caption blocks.

RULES:
- Data model dataclasses are the contract — change with care
- Derivations never mutate segments
- No module in core performs network or disk I/O
"""
