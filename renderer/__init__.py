"""
Question Content Renderer
=========================
Dual-output rendering engine for rich exam-question documents.

Architecture:
    - Content Model: Typed content blocks (text, image, table, math, grid,
      number-line, chart, shape, tally, clock, money, fraction, spacer)
    - Media Resolver: Signed, time-limited URL resolution with caching
    - Visual Renderer: Block-by-block HTML/SVG layout
    - Speech Linearizer: Flat speakable transcript for read-aloud
    - Playback Controller: Speech/audio state machine

Version: 1.0.0
"""

__version__ = "1.0.0"
