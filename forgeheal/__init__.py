"""
ForgeHeal
=========

Self-improvement engine for CodeForge projects: a bounded
observe / orient / decide / act / verify repair loop over a JS/TS source tree.
"""

__version__ = "0.1.0"
