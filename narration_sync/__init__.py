"""Narration Sync — timeline synchronization for narrated script videos.

WHY: A narrated video is built from script segments, each with generated
voice audio and word-level timings. When the user edits text, inserts,
deletes or reorders segments, the voice and captions must be kept
consistent without regenerating the whole project.

HOW: Four layers — the segment store (single source of truth), derived
sync status, on-demand regeneration of stale voice assets through an
external provider, and per-frame caption resolution with word highlight
state. The TimelineEngine bundles them per project; the HTTP API and CLI
sit on top.

RULES:
- The SegmentStore is the only owner of segment state
- Sync status and caption frames are derived, never stored
- Only the RegenerationOrchestrator writes voice assets
"""

__version__ = "0.1.0"
