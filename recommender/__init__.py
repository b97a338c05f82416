"""
LeetNode adaptive practice engine.

Decides which question a learner sees next, materializes randomized
question variations, and keeps a per-topic mastery estimate up to date.
"""

__version__ = "1.0.0"
